"""
Proxy package for the Gateway.

- upstream_client: httpx client returning typed upstream results
- translator: failure kind -> client-facing gateway error
- forwarder: relays proxy-route requests and upstream answers
"""
