"""
grafana_operator

This package reconciles declared Grafana organizations and teams against a
Grafana instance and records the remote ids back into status.

Subpackages:
core contains shared data structures, errors, config and logging setup
store contains the desired state and credential store interfaces
gateway contains the remote platform client and its transports
controller contains the organization and team reconcilers
agent contains the work queue and the runtime loop
"""
