"""
HPA Exporter - publishes HorizontalPodAutoscaler spec/status as Prometheus metrics
"""

__version__ = "1.0.0"
