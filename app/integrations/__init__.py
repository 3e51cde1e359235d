"""app.integrations — outbound gateways to third-party services.

Every call to the payment processor goes through a gateway in this
package, never via bare `requests` calls in services or blueprints:
  - Authenticated (secret key injected by the gateway)
  - Retried with exponential backoff on transient failures
  - Idempotency-keyed so a retry cannot double-charge or double-refund
  - Logged with attempt counts

Current gateways:
  payment_gateway.PaymentGateway — Stripe-compatible checkout & refunds
"""
