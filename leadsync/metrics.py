"""Prometheus metrics shared by the API and the background worker."""

from prometheus_client import Counter, Histogram

api_requests_total = Counter('api_requests_total', 'Total API requests', ['method', 'endpoint', 'status'])
api_request_duration = Histogram('api_request_duration_seconds', 'API request duration')
lead_mutations_total = Counter(
    'lead_mutations_total', 'Single-lead mutations', ['pipeline', 'kind', 'outcome']
)
bulk_items_total = Counter('bulk_items_total', 'Bulk operation items', ['pipeline', 'action', 'outcome'])
bulk_jobs_total = Counter('bulk_jobs_total', 'Bulk operation jobs', ['pipeline', 'action', 'outcome'])
