"""Payment-gateway event processing -- from Stripe webhook to CRM sink calls.

- metadata: precedence-ordered metadata tiers and pattern rules
- event: PaymentGatewayEvent, the canonical accumulator
- guard: subscription-created idempotency rules
- payouts: PayoutReconciler
- processor: StripeProcessor (event switch and fetch orchestration)
- workers: KeyedWorkerPool
- dispatcher: WebhookDispatcher (verify, decode, schedule)
- replay: StripeReplayer (backfill tooling)
"""
