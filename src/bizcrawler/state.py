# Progress of crawl tasks keyed by task id, read by the HTTP API
crawl_progress = {}
