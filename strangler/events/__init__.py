"""Event ingestion service: HTTP -> Kafka producer, plus per-topic consumers."""
