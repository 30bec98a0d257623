"""
 #      ##    ###  #  #  ###    ##    ##   #
 #     #  #  #     # #   #  #  #  #  #  #  #
 #     #  #  #     ##    ###   #  #  #  #  #
 #     #  #  #     # #   #     #  #  #  #  #
 ####   ##    ###  #  #  #      ##    ##   ####

LockPool hands out exclusive, time-bounded leases on a fixed collection of
interchangeable resources (API keys, worker slots, database shards...) to
callers that may run in different processes. Mutual exclusion is delegated to
a lock driver: in-process memory, Redis or DynamoDB.

Version: 1.0.0 - Release Date: 19/Oct/2026
License: MIT

"""
from lockpool.lockpool import *
from lockpool.lockpool import __version__, __release__, __appname__
from lockpool.dynamodb import *
from lockpool.rediscache import *
