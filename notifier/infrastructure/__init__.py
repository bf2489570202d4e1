"""Infrastructure adapters: broker, email provider and DeX API client."""
