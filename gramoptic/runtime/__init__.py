# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Gram-Optic Runtime

- state:      persisted state record shared by control commands
- daemon:     workspace monitoring daemon (run as its own process)
- supervisor: start/stop/restart/status of tiers and daemon
"""
