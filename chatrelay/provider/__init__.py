"""WhatsApp Cloud API transport: message variants and the HTTP client."""
