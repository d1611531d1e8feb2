import os

_defaults = {
    "BOOK_SERVICE_DATABASE_URL": "sqlite://",
    "BOOK_SERVICE_SEED_DATA": "false",
    "SUBSCRIPTION_SERVICE_DATABASE_URL": "sqlite://",
    "SUBSCRIPTION_SERVICE_SEED_DATA": "false",
    "SUBSCRIPTION_SERVICE_BOOK_SERVICE_URL": "http://fake-book-service",
    "API_GATEWAY_BOOK_SERVICE_URL": "http://book-service",
    "API_GATEWAY_SUBSCRIPTION_SERVICE_URL": "http://subscription-service",
}

for k, v in _defaults.items():
    os.environ.setdefault(k, v)
