"""
Hanteo Chart API constants: endpoints, response codes, per-record status
codes, and the country name → ISO 3166-1 alpha-2 table used when a Shopify
address carries a country name but no code.
"""

from typing import Optional

TOKEN_ENDPOINT = "/oauth/token"
SALES_DATA_ENDPOINT = "/v4/collect/realtimedata/ALBUM"
TOKEN_GRANT_TYPE = "client_credentials"

# Response codes (body "code" field)
SUCCESS = 100
PARTIAL_SUCCESS = 101
DUPLICATE_DATA = 404
NO_DATA = 601
MISSING_REQUIRED_DATA = 602
INVALID_DATA_FORMAT = 603
INVALID_DATA = 604
NETWORK_ERROR = 702
SERVER_ERROR = 703
INVALID_TOKEN = 821
TOKEN_EXPIRED = 822
ALREADY_VERIFIED = 902

TOKEN_REJECTION_CODES = frozenset({INVALID_TOKEN, TOKEN_EXPIRED})

# Per-record status codes returned in failData
RECORD_STATUS_CODES = {
    "UC": "Unregistered Barcode",
    "UB": "Unregistered BranchCode",
    "CC": "Cannot Collect",
    "MB": "Missing BranchCode",
    "BS": "Before Saledate",
    "SB": "Space Barcode",
    "NA": "Notuse Album",
    "NT": "Not Today Data",
}

DEFAULT_COUNTRY_CODE = "XX"

COUNTRY_CODE_MAP = {
    "United States": "US",
    "Canada": "CA",
    "United Kingdom": "GB",
    "Australia": "AU",
    "Japan": "JP",
    "South Korea": "KR",
    "China": "CN",
    "Germany": "DE",
    "France": "FR",
    "Brazil": "BR",
    "Mexico": "MX",
    "Singapore": "SG",
    "Malaysia": "MY",
    "Thailand": "TH",
    "Philippines": "PH",
    "Indonesia": "ID",
    "Vietnam": "VN",
    "India": "IN",
    "Netherlands": "NL",
    "Spain": "ES",
    "Italy": "IT",
    "Poland": "PL",
    "Sweden": "SE",
    "Norway": "NO",
    "Denmark": "DK",
    "Finland": "FI",
    "Belgium": "BE",
    "Switzerland": "CH",
    "Austria": "AT",
    "New Zealand": "NZ",
    "Argentina": "AR",
    "Chile": "CL",
    "Colombia": "CO",
    "Peru": "PE",
    "South Africa": "ZA",
    "United Arab Emirates": "AE",
    "Saudi Arabia": "SA",
    "Israel": "IL",
    "Turkey": "TR",
    "Russia": "RU",
    "Ukraine": "UA",
    "Czech Republic": "CZ",
    "Hungary": "HU",
    "Portugal": "PT",
    "Greece": "GR",
    "Romania": "RO",
    "Ireland": "IE",
}


def country_code_for(country_name: Optional[str]) -> str:
    if not country_name:
        return DEFAULT_COUNTRY_CODE
    return COUNTRY_CODE_MAP.get(country_name.strip(), DEFAULT_COUNTRY_CODE)


def describe_record_status(code: str) -> str:
    return RECORD_STATUS_CODES.get(code, code)
