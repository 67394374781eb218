import os

from redis.asyncio import Redis

from common.retry import RetryPolicy, exponential_backoff, is_conflict, is_transient

KAFKA_BOOTSTRAP_SERVERS = os.environ.get("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
OTEL_ENDPOINT = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

# Outbound HTTP to peer services and the payment gateway
HTTP_CONNECT_TIMEOUT = float(os.environ.get("HTTP_CONNECT_TIMEOUT", "2.0"))
HTTP_READ_TIMEOUT = float(os.environ.get("HTTP_READ_TIMEOUT", "10.0"))
HTTP_MAX_ATTEMPTS = int(os.environ.get("HTTP_MAX_ATTEMPTS", "3"))

# Optimistic-concurrency writes on ledger / invoice / cart records
CAS_MAX_ATTEMPTS = int(os.environ.get("INVENTORY_MAX_ATTEMPTS", "5"))

# In-process redelivery of a message whose handler hit a transient error
CONSUMER_MAX_ATTEMPTS = int(os.environ.get("CONSUMER_MAX_ATTEMPTS", "3"))


def http_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=HTTP_MAX_ATTEMPTS,
                       backoff=exponential_backoff(base=0.2, factor=2.0, cap=2.0),
                       retry_on=is_transient,
                       name="http")


def cas_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=CAS_MAX_ATTEMPTS,
                       backoff=exponential_backoff(base=0.01, factor=2.0, cap=0.5),
                       retry_on=is_conflict,
                       name="cas")


def consumer_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=CONSUMER_MAX_ATTEMPTS,
                       backoff=exponential_backoff(base=0.5, factor=2.0, cap=4.0),
                       retry_on=is_transient,
                       name="consumer")


def redis_from_env() -> Redis:
    return Redis(
        host=os.environ.get('REDIS_HOST', 'localhost'),
        port=int(os.environ.get('REDIS_PORT', '6379')),
        password=os.environ.get('REDIS_PASSWORD') or None,
        db=int(os.environ.get('REDIS_DB', '0'))
    )


def service_url(name: str, default: str) -> str:
    return os.environ.get(f"{name.upper()}_SERVICE_URL", default).rstrip("/")
