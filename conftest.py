import logging

# dnspython and asyncio are chatty at DEBUG; keep test logs to this package.
for _name in ("asyncio", "dns"):
    logging.getLogger(_name).setLevel(logging.WARNING)
