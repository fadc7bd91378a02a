import os

# Preload so config errors fail the boot, not the first request
preload_app = True

# Fulfillment runs are sequential per order; one worker until load says otherwise
workers = int(os.environ.get("WEB_CONCURRENCY", "1"))

# Bind
bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"

# Timeout: a fulfillment request waits on Gelato (GELATO_TIMEOUT_SECONDS) plus DB writes
timeout = 120
