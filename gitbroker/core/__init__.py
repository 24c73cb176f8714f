"""Order keys, file naming, retry and cancellation."""
