"""Docker Route Discovery (DRD).

Keeps a routing table (published host -> container endpoint) in sync with the
containers running on a docker daemon:
 - containers opt in with VIRTUAL_HOST (and optionally VIRTUAL_PORT)
 - the whole table is rebuilt on connect and on container start/stop/die
 - every complete table is handed to a single consumer callback

Serving traffic with the table is left to the consumer.
"""
