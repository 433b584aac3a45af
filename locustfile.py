"""
Load test for the ticket proxy.

    uvicorn fake_backend.fake_upstream:app --port 8099
    API_BASE_URL=http://127.0.0.1:8099 uvicorn ticketproxy.app:app --port 8000
    locust -f locustfile.py

MODE:
  browse = storefront traffic: event listings plus effective pricing lookups
  chaos  = mixes in flaky, rate-limited and large upstream responses
"""
from locust import HttpUser, task, between
import os
import uuid

PROXY_HOST = os.getenv("PROXY_HOST", "http://127.0.0.1:8000")
SPORT = os.getenv("SPORT", "soccer")
TICKETS = int(os.getenv("TICKETS", "20"))
MODE = os.getenv("MODE", "browse").lower()


class StorefrontUser(HttpUser):
    host = PROXY_HOST
    wait_time = between(0.1, 0.3)

    def on_start(self):
        self.event_id = f"evt_{uuid.uuid4().int % 5 + 1}"
        self.ticket_ids = [f"{self.event_id}_tkt_{i}" for i in range(TICKETS)]

    def _pricing_params(self, **extra) -> dict:
        params = {"sport_type": SPORT, "tournament_id": "trn_1"}
        params.update(extra)
        return params

    @task(5)
    def list_events(self):
        self.client.get("/v1/events", params={"page_size": 5}, name="/v1/events (proxied)")

    @task(3)
    def effective_markups(self):
        self.client.get(
            f"/v1/events/{self.event_id}/effective-markups",
            params=self._pricing_params(ticket_ids=",".join(self.ticket_ids)),
            name="/v1/events/[id]/effective-markups",
        )

    @task(2)
    def effective_hospitalities(self):
        self.client.get(
            f"/v1/events/{self.event_id}/effective-hospitalities",
            params=self._pricing_params(ticket_ids=",".join(self.ticket_ids)),
            name="/v1/events/[id]/effective-hospitalities",
        )

    @task(2)
    def ticket_markup(self):
        ticket_id = self.ticket_ids[uuid.uuid4().int % len(self.ticket_ids)]
        self.client.get(
            f"/v1/events/{self.event_id}/tickets/{ticket_id}/effective-markup",
            params=self._pricing_params(base_price_usd="100"),
            name="/v1/events/[id]/tickets/[id]/effective-markup",
        )

    @task(1)
    def flaky_upstream(self):
        if MODE != "chaos":
            return
        key = uuid.uuid4().hex[:8]
        with self.client.get(f"/v1/flaky/{key}", name="/v1/flaky (proxied)", catch_response=True) as r:
            if r.status_code == 200:
                r.success()
            else:
                r.failure(f"unexpected status {r.status_code}: {r.text[:200]}")

    @task(1)
    def rate_limited_upstream(self):
        if MODE != "chaos":
            return
        key = uuid.uuid4().hex[:8]
        with self.client.get(
            f"/v1/rate-limited/{key}",
            params={"retry_after": "1"},
            name="/v1/rate-limited (proxied)",
            catch_response=True,
        ) as r:
            if r.status_code in (200, 429, 503):
                r.success()
            else:
                r.failure(f"unexpected status {r.status_code}")

    @task(1)
    def large_body(self):
        if MODE != "chaos":
            return
        self.client.get("/v1/big", params={"size": 3 * 1024 * 1024}, name="/v1/big (streamed)")
