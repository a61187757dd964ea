"""Google Cloud Monitoring to Prometheus exporter."""
