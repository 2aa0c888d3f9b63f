"""
senders — Per-provider delivery backends.

Each sender exposes:
    async send(payload: ProviderPayload) -> None   (raises SendError)

Senders never retry. Retry logic lives in the dispatch engine.
"""
