#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations
"""
Redis lock driver for lockpool. A lock is a plain string key written with SET NX PX, so Redis
itself expires stale locks and decides the winner between concurrent writers.

License: MIT

"""
import math
from typing import Any, Mapping, Union
from redis.asyncio import Redis

from lockpool.lockpool import LockDriver, ElapsedTimer

__all__ = ['RedisLockDriver']

class RedisLockDriver(LockDriver):
    """
    Lock driver backed by Redis (or any server speaking its protocol: Valkey, KeyDB, ElastiCache...).

    Parameters:
        connection (redis.asyncio.Redis | Mapping | None, default=None):
            An already configured asyncio client, or the keyword arguments to build one
            (ex: {"host": "localhost", "port": 6379, "db": 0}). None connects to localhost:6379.

        key_prefix (str, default=""):
            Prepended to every lock key, to keep the locks of different pools apart.

        verbose (bool, default=False) / debug (bool, default=False):
            Print informational / debug messages.

    Usage:

        from lockpool import ResourcePool, RedisLockDriver
        driver = RedisLockDriver({"host": "localhost", "port": 6379, "db": 0},key_prefix="api-keys:")
        pool = ResourcePool(driver=driver,resources=api_keys,key=lambda k: k.id,expires=30_000)
    """
    def __init__(self,
                 connection:Union[Redis,Mapping[str,Any],None]=None, # client or client keyword arguments
                 key_prefix:str="",                                 # prefix of every lock key
                 verbose:bool=False,                                # print messages
                 debug:bool=False,                                  # print debug messages
                 )->None:
        if connection is None or isinstance(connection,Mapping):
            self.redis, self.__owns_connection = Redis(**dict(connection or {})), True
        elif isinstance(connection,Redis):
            self.redis, self.__owns_connection = connection, False
        else:
            raise AttributeError(f"The provided connection parameter is not a redis.asyncio.Redis client nor a mapping of its parameters (current class {type(connection)})") from None
        self.key_prefix = key_prefix

        classLogging = self._get_logger(verbose,debug)
        self.logDebug = classLogging.debug
        self.logInfo = classLogging.info
        self.logInfo(f"Initialized {self.__class__.__name__}: key_prefix='{self.key_prefix}'")

    async def lock(self,key:str,ttl:Union[int,float])->bool:
        self._validate(key,ttl)
        with ElapsedTimer() as elapsed:
            result = await self.redis.set(f"{self.key_prefix}{key}","1",px=math.ceil(ttl),nx=True)
            if result:
                self.logDebug(f"Lock '{key}' successfully acquired for {ttl}ms {elapsed.text()}")
                return True
            self.logDebug(f"Lock '{key}' is already acquired by another process {elapsed.text()}")
            return False

    async def unlock(self,key:str)->bool:
        with ElapsedTimer() as elapsed:
            deleted = await self.redis.delete(f"{self.key_prefix}{key}")
            self.logDebug(f"Lock '{key}' released ({deleted} key deleted) {elapsed.text()}")
            return True

    async def aclose(self)->None:
        """Close the connection pool, only if this driver created the client."""
        if self.__owns_connection:
            await self.redis.aclose()
