"""mail/ -- Outbound notification transport for onboarding emails.

Layer rule: mail/ imports only stdlib, third-party libraries, and core/.
auth/ never imports from mail/; the API lifespan injects a notifier.
"""
