"""Infrastructure -- codec, transport, forwarding, logging."""
