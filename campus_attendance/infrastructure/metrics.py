from prometheus_client import Counter, Histogram, Gauge, generate_latest
from fastapi import Response

# Метрики для HTTP запросов
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Метрики для Ethereum узла
chain_connected = Gauge('chain_connected', 'Ethereum node connectivity (1 = connected)')
chain_block_height = Gauge('chain_block_height', 'Latest block number seen by the gateway')
chain_connect_attempts_total = Counter(
    'chain_connect_attempts_total',
    'Ethereum connection attempts',
    ['outcome']
)

# 1 = живой контракт, 0 = mock ledger
contract_backend_live = Gauge('contract_backend_live', 'Contract accessor backend (1 = live, 0 = mock)')

# Метрики для ролей
role_query_failures_total = Counter(
    'role_query_failures_total',
    'Failed role sub-queries during role resolution',
    ['query']
)
emergency_access_total = Counter(
    'emergency_access_total',
    'Emergency access attempts',
    ['outcome']
)

# Метрики для кэша разрешений
session_cache_hits_total = Counter('session_cache_hits_total', 'Total permission cache hits')
session_cache_misses_total = Counter('session_cache_misses_total', 'Total permission cache misses')


def metrics_endpoint():
    """Endpoint для Prometheus метрик"""
    return Response(content=generate_latest(), media_type="text/plain")
