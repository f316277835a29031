"""Internal constants for the Ayla device cloud backing Rinnai Control-R."""

from __future__ import annotations

SERVICE_DOMAINS: dict[str, str] = {
    "us": "https://ads-field.aylanetworks.com",
    "eu": "https://ads-field-eu.aylanetworks.com",
    "cn": "https://ads-field.ayla.com.cn",
}
DEFAULT_REGION = "us"

# User service (no bearer token)
PATH_SIGN_IN = "/users/sign_in"
PATH_REFRESH_TOKEN = "/users/refresh_token"

# Bearer-authenticated
PATH_USER_PROFILE = "/users/get_user_profile"
PATH_DEVICES = "/apiv1/devices"
PATH_DEVICE = "/apiv1/dsns/{dsn}"
PATH_PROPERTY = "/apiv1/dsns/{dsn}/properties/{name}"
PATH_DATAPOINTS = "/apiv1/dsns/{dsn}/properties/{name}/datapoints"

REFRESH_TOKEN_GRACE_PERIOD = 12 * 3600  # seconds before expiry to refresh
REFRESH_TOKEN_INTERVAL = 3600  # seconds between renewal checks
REQUEST_TIMEOUT = 15  # seconds

APP_HEADERS: dict[str, str] = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}

MANUFACTURER = "Rinnai"
DEFAULT_MODEL = "Control-R"

# Device property names
PROPERTY_RECIRCULATE_MODE = "recirculation_enabled"
PROPERTY_TEMPERATURE = "domestic_temperature"
PROPERTY_WATER_FLOWING = "water_flow_status"
PROPERTY_OUTLET_TEMP = "outlet_temperature"
