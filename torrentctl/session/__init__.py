"""Session lifecycle: alert dispatch, ingestion, shutdown and the tick loop."""
