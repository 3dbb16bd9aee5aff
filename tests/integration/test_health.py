"""
Integration tests for the infrastructure endpoints.
"""


class TestInfrastructure:
    """Health, CSRF token and metrics endpoints."""

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['database'] == 'connected'

    def test_cache_health_is_degraded_without_redis(self, client):
        response = client.get('/health/cache')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'degraded'

    def test_csrf_token(self, client):
        assert client.get('/csrf-token').get_json()['csrfToken']

    def test_metrics_include_checkout_counters(self, client):
        client.get('/health')
        body = client.get('/metrics').get_data(as_text=True)

        assert 'http_requests_total' in body
        assert 'storefront_checkouts_total' in body

    def test_unknown_route_is_json(self, client):
        response = client.get('/nope')
        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'
