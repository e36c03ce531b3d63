"""Internal constants shared across the library."""

BASE_URL = "https://api.courier.example.com/api/v1"
USER_AGENT = "pycourier/1"

# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

AVAILABLE_ORDERS_ENDPOINT = "/driver/orders/available"
ACCEPT_ORDER_ENDPOINT = "/driver/orders/{order_id}/accept"
ARRIVE_PICKUP_ENDPOINT = "/driver/delivery/arrive-pickup"
CONFIRM_PICKUP_ENDPOINT = "/driver/delivery/confirm-pickup"
ARRIVE_DROPOFF_ENDPOINT = "/driver/delivery/arrive-dropoff"
VERIFY_TOKEN_ENDPOINT = "/driver/delivery/verify-token"
COMPLETE_DELIVERY_ENDPOINT = "/driver/delivery/complete"
CANCEL_DELIVERY_ENDPOINT = "/driver/delivery/cancel"
UPDATE_LOCATION_ENDPOINT = "/driver/delivery/location"
LOCATION_LOSS_ENDPOINT = "/driver/delivery/location-loss"
SUBMIT_REVIEW_ENDPOINT = "/driver/delivery/review"
PAYOUT_STATUS_ENDPOINT = "/driver/finance/payout/{payout_id}/status"

# ------------------------------------------------------------------
# Timing
# ------------------------------------------------------------------

SCAN_DURATION_SECONDS = 30
SCAN_TICK_SECONDS = 1.0

PAYOUT_POLL_INTERVAL_SECONDS = 10.0
PAYOUT_POLL_TIMEOUT_SECONDS = 5 * 60.0
PAYOUT_POLL_MAX_ERRORS = 3

NAVIGATION_GUARD_WINDOW_SECONDS = 5.0

# Location tracking cadence per situation (seconds).
TRACKING_INTERVAL_NAVIGATING = 5.0
TRACKING_INTERVAL_MOVING = 30.0
TRACKING_INTERVAL_WAITING = 120.0
TRACKING_INTERVAL_IDLE = 60.0

LOCATION_FAILURE_WARN_AT = 3
LOCATION_FAILURE_NOTIFY_AT = 5

# ------------------------------------------------------------------
# Geometry
# ------------------------------------------------------------------

GEOFENCE_RADIUS_M = 500.0
# Approach warnings (metres); each latches once per geofence visit.
PROXIMITY_WARNING_TIERS_M = (10, 15, 25)
EARTH_RADIUS_M = 6371e3
