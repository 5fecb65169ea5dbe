"""Live operational dashboard core: scheduled data refresh, notifications and a streaming assistant."""
