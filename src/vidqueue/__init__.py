"""Background video upload queue: durable, restartable, bounded concurrency."""
