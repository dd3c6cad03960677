"""Prometheus metrics for the application"""
from prometheus_client import Counter, Gauge, REGISTRY


def _registered(name):
    # Collectors survive module reloads (tests, uvicorn --reload)
    return REGISTRY._names_to_collectors.get(name)


try:
    oauth_flows_counter = Counter(
        'crosspost_oauth_flows_total',
        'OAuth authorization flows by outcome',
        ['platform', 'outcome']
    )
except ValueError:
    oauth_flows_counter = _registered('crosspost_oauth_flows_total')

try:
    token_refresh_counter = Counter(
        'crosspost_token_refresh_total',
        'Access token refresh attempts by outcome',
        ['platform', 'outcome']
    )
except ValueError:
    token_refresh_counter = _registered('crosspost_token_refresh_total')

try:
    publish_jobs_counter = Counter(
        'crosspost_publish_jobs_total',
        'Publish jobs by platform and final status',
        ['platform', 'status']
    )
except ValueError:
    publish_jobs_counter = _registered('crosspost_publish_jobs_total')

try:
    publish_queue_depth_gauge = Gauge(
        'crosspost_publish_queue_depth',
        'Jobs waiting in each platform queue',
        ['platform']
    )
except ValueError:
    publish_queue_depth_gauge = _registered('crosspost_publish_queue_depth')

try:
    pending_oauth_states_gauge = Gauge(
        'crosspost_pending_oauth_states',
        'OAuth state tokens issued but not yet consumed or expired'
    )
except ValueError:
    pending_oauth_states_gauge = _registered('crosspost_pending_oauth_states')
