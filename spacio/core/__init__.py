"""Infrastructure for the spacio client: config, HTTP, storage, time, logging."""
