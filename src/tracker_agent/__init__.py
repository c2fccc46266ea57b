"""
Tracker Agent: resilient geolocation telemetry publisher.

Samples position and battery on a fixed interval, queues every sample durably,
and publishes the queue to an MQTT broker whenever a connection is available.
"""
