#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations
"""
 #      ##    ###  #  #  ###    ##    ##   #
 #     #  #  #     # #   #  #  #  #  #  #  #
 #     #  #  #     ##    ###   #  #  #  #  #
 #     #  #  #     # #   #     #  #  #  #  #
 ####   ##    ###  #  #  #      ##    ##   ####

LockPool hands out exclusive, time-bounded leases on a fixed collection of
interchangeable resources (API keys, worker slots, database shards...) to callers
that may run in different processes, using a pluggable lock backend.

License: MIT

"""
import time, math, random, asyncio, inspect
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Awaitable, Callable, Sequence, Union

__appname__ = "Resource Pool with distributed locks"
__version__ = "1.0.0"
__release__ = "19/Oct/2026"

__all__ = ['ResourcePool','ResourcePoolLease','LockDriver','MemoryLockDriver',
           'ResourcePoolException','ResourcePoolConfigError','ResourcePoolTimeoutError',
           'ResourcePoolAcquireException','ResourcePoolWarmUpException',
           'ResourcePoolLogging','ElapsedTimer']

class ResourcePoolException(Exception):...                     # Base class for every error raised by lockpool.
class ResourcePoolConfigError(ResourcePoolException,ValueError):...  # Raised on an invalid ttl, poll interval, timeout or key.
class ResourcePoolTimeoutError(ResourcePoolException):...       # Raised by lease() when the timeout is reached.
class ResourcePoolAcquireException(ResourcePoolException):...   # Raised by lease() when every resource is held.
class ResourcePoolWarmUpException(ResourcePoolException):...    # Raised when a driver warmup fails.

class ElapsedTimer:
    """A simple context manager to measure the elapsed time in seconds.

       Usage:
            with ElapsedTimer() as elapsed:
                print(elapsed.text(decimal_places=6, end_text=" seconds.", with_brackets=False))
    """
    def __enter__(self):
        self.start = time.monotonic()
        self.time = None
        return self
    def __exit__(self, type, value, traceback):
        self.time = time.monotonic() - self.start
    def text(self,decimal_places:int=6,end_text:str=" sec",begin_text:str="",with_brackets=True):
        elapsed = self.time if self.time is not None else time.monotonic() - self.start
        timer_string = f"[{begin_text}{f'%.{decimal_places}f'%(elapsed)}{end_text}]"
        return timer_string if with_brackets else timer_string[1:-1]

class ResourcePoolLogging():
    """Class for logging. Create a new class with the same methods and attributes to customize the logging mechanism.

        class myLoggingClass(ResourcePoolLogging):
            def info(self,msg,prefix:str="[INFO] ")->None:
                pass # customize as you wish
            def debug(self,msg,prefix:str="[DEBUG] ")->None:
                pass # customize as you wish

    Then override `_get_logger(self)->myLoggingClass` in your ResourcePool or LockDriver subclass.
    """
    def __init__(self,verbose:bool=False,debug:bool=False,info_prefix="[INFO] ",debug_prefix="[DEBUG] ",with_date:bool=True)->None:
        self.__debug = debug
        self.__verbose = verbose
        self.info_prefix = info_prefix
        self.debug_prefix = debug_prefix
        self.__with_date = with_date
        self.info = self.__logEmpty if not (self.__verbose or self.__debug) else self.info
        self.debug = self.__logEmpty if not self.__debug else self.debug
    def info(self,msg,prefix:str=None)->None:
        print(f"{self.__get_date()}{prefix if prefix is not None else self.info_prefix}{msg}",flush=True)
    def debug(self,msg,prefix:str=None)->None:
        print(f"{self.__get_date()}{prefix if prefix is not None else self.debug_prefix}{msg}",flush=True)
    def __logEmpty(self,msg,prefix:str="")->None:...
    def __get_date(self):
        if not self.__with_date: return ''
        A = datetime.now()
        if A.microsecond%1000>=500:A=A+timedelta(milliseconds=1)
        D = A.strftime('%y/%m/%d %H:%M:%S.%f')[:-3]
        return D+" "

def _check_positive(name:str,value:Any)->Union[int,float]:
    """Fail fast on durations that are not strictly positive numbers (milliseconds)."""
    if isinstance(value,bool) or not isinstance(value,(int,float)) or not math.isfinite(value) or value <= 0:
        raise ResourcePoolConfigError(f"{name} must be a positive number of milliseconds (current {value!r})")
    return value

async def _resolve(value:Any)->Any:
    return await value if inspect.isawaitable(value) else value

class LockDriver(ABC):
    """Capability every lock backend implements.

    Both operations must be safe for any number of concurrent callers, in this process or in others:

        lock(key, ttl)  -> atomically write (key, now + ttl) if the key is absent or its expiration already
                           passed. Returns True if this call wrote the entry, False on contention.
        unlock(key)     -> delete the entry for key, whoever holds it. Returns True once the backend
                           acknowledged the delete, even if there was nothing to delete.

    The ttl is given in milliseconds. Backend failures are raised as they are; only contention is
    reported as False.
    """
    def _get_logger(self,verbose:bool=False,debug:bool=False)->ResourcePoolLogging:
        """You can customize the logging mechanism by creating a new class with the same methods and attributes."""
        return ResourcePoolLogging(verbose=verbose,debug=debug)

    @staticmethod
    def _validate(key:str,ttl:Union[int,float])->None:
        if not isinstance(key,str) or key == '':
            raise ResourcePoolConfigError(f"The lock key must be a non-empty string (current {key!r})")
        _check_positive("ttl",ttl)

    @abstractmethod
    async def lock(self,key:str,ttl:Union[int,float])->bool:
        raise NotImplementedError

    @abstractmethod
    async def unlock(self,key:str)->bool:
        raise NotImplementedError

class MemoryLockDriver(LockDriver):
    """
    Lock driver backed by a dict living in the current process. Expirations use time.monotonic(),
    so entries never cross a process boundary. Use it for tests and for pools shared by tasks
    or threads of a single process.
    """
    def __init__(self,verbose:bool=False,debug:bool=False)->None:
        self._entries:dict[str,float] = {}
        self._threadsafe_lock:Lock = Lock()
        classLogging = self._get_logger(verbose,debug)
        self.logDebug = classLogging.debug

    async def lock(self,key:str,ttl:Union[int,float])->bool:
        self._validate(key,ttl)
        with self._threadsafe_lock:
            now = self._now()
            expiration = self._entries.get(key)
            if expiration is not None and expiration > now:
                self.logDebug(f"Lock '{key}' is held for {expiration-now:.3f} more seconds")
                return False
            self._entries[key] = now + (ttl / 1000)
        self.logDebug(f"Lock '{key}' acquired for {ttl}ms")
        return True

    def _now(self)->float:
        return time.monotonic()

    async def unlock(self,key:str)->bool:
        with self._threadsafe_lock:
            self._entries.pop(key,None)
        self.logDebug(f"Lock '{key}' released")
        return True

    def locked_keys(self)->list[str]:
        """Return the keys whose entries have not expired yet."""
        with self._threadsafe_lock:
            now = self._now()
            return [key for key, expiration in self._entries.items() if expiration > now]

    def clear(self)->None:
        with self._threadsafe_lock:
            self._entries.clear()

class ResourcePoolLease():
    """A context aware object that acquires a resource on enter and releases it on exit.

        async with pool.lease(timeout=2000) as api_key:
            await call_the_api(api_key)
    """
    def __init__(self,pool:ResourcePool,timeout:Union[int,float,None]=None)->None:
        self.pool = pool
        self.timeout = timeout
        self.resource = None
        self.acquired = False
    async def __aenter__(self)->Any:
        resource = await self.pool.acquire(timeout=self.timeout)
        if resource is None:
            if self.timeout:
                raise ResourcePoolTimeoutError(f"Timed out after {self.timeout}ms waiting for a free resource ({self.pool.size()} in the pool).") from None
            raise ResourcePoolAcquireException(f"All {self.pool.size()} resources of the pool are locked.") from None
        self.resource, self.acquired = resource, True
        return resource
    async def __aexit__(self,exc_type,exc_value,traceback)->None:
        if self.acquired:
            self.acquired = False
            await self.pool.release(self.resource)

class ResourcePool():
    """
    A fixed collection of interchangeable resources where each resource can be leased by one
    caller at a time. Exclusion is delegated to a LockDriver, so pools living in different
    processes (or machines) exclude each other as long as they share the same backend and keys.

    Parameters:
        driver (LockDriver):
            The lock backend (MemoryLockDriver, RedisLockDriver, DynamoDBLockDriver or your own).

        resources (Sequence):
            The resources. Copied at construction, never added to or removed from.

        key (Callable):
            Resource -> str. Must be stable for the identity of the resource. May be a coroutine function.

        expires (int|float|Callable):
            Lease duration in milliseconds, constant or Resource -> milliseconds. May be a coroutine function.

        shuffle (bool, default=True):
            Scan the resources in a new random order on every scan, so many pools do not all
            fight for the first resource of the list.

        poll_interval (int|float, default=500):
            Milliseconds to wait between two scans when acquire() was given a timeout.

        verbose (bool, default=False) / debug (bool, default=False):
            Print informational / debug messages.

    Usage:

        from lockpool import ResourcePool, MemoryLockDriver
        pool = ResourcePool(driver=MemoryLockDriver(),resources=["key-a","key-b"],key=lambda r: r,expires=30_000)

        api_key = await pool.acquire(timeout=5000)
        if api_key is not None:
            try:
                await do_something(api_key)
            finally:
                await pool.release(api_key)

        async with pool.lease(timeout=5000) as api_key:
            await do_something(api_key)
    """
    def __init__(self,
                 driver:LockDriver,                             # the lock backend
                 resources:Sequence[Any],                       # the fixed collection of resources
                 key:Callable[[Any],Union[str,Awaitable[str]]], # resource -> lock key
                 expires:Union[int,float,Callable[[Any],Any]],  # lease duration in milliseconds, or resource -> milliseconds
                 shuffle:bool=True,                             # random scan order, recomputed on every scan
                 poll_interval:Union[int,float]=500,            # milliseconds between scans while waiting
                 verbose:bool=False,                            # print messages
                 debug:bool=False,                              # print debug messages
                 )->None:
        if not (callable(getattr(driver,"lock",None)) and callable(getattr(driver,"unlock",None))):
            raise AttributeError(f"The provided driver does not implement lock() and unlock() (current class {type(driver)})") from None
        if not callable(key):
            raise ResourcePoolConfigError(f"key must be a callable returning the lock key of a resource (current {key!r})")
        if not callable(expires):
            _check_positive("expires",expires)

        self.__classLogging = self._get_logger(verbose,debug)
        self.logDebug = self.__classLogging.debug
        self.logInfo = self.__classLogging.info

        self.driver = driver
        self.__resources = tuple(resources)
        self.__key = key
        self.__expires = expires
        self.shuffle = bool(shuffle)
        self.poll_interval = _check_positive("poll_interval",poll_interval)

        self.logInfo(f"Initialized {self.__class__.__name__}: driver='{type(driver).__name__}' resources={len(self.__resources)} "
                     f"shuffle={self.shuffle} poll_interval={self.poll_interval}ms")

    def _get_logger(self,verbose:bool=False,debug:bool=False)->ResourcePoolLogging:
        """You can customize the logging mechanism by creating a new class with the same methods and attributes."""
        return ResourcePoolLogging(verbose=verbose,debug=debug)

    @property
    def resources(self)->tuple:
        return self.__resources

    def size(self)->int:
        """Return the number of resources configured at construction."""
        return len(self.__resources)

    def __len__(self)->int:
        return self.size()

    async def get_key(self,resource:Any)->str:
        return await _resolve(self.__key(resource))

    async def get_expires(self,resource:Any)->Union[int,float]:
        expires = await _resolve(self.__expires(resource)) if callable(self.__expires) else self.__expires
        return _check_positive("expires",expires)

    async def _scan(self)->Any:
        """One pass over the resources. Returns the first resource whose lock was written, or None."""
        indices = list(range(len(self.__resources)))
        if self.shuffle:
            random.shuffle(indices)
        for index in indices:
            resource = self.__resources[index]
            key = await self.get_key(resource)
            expires = await self.get_expires(resource)
            if await self.driver.lock(key,expires):
                self.logDebug(f"Resource '{key}' acquired for {expires}ms")
                return resource
        return None

    async def acquire(self,timeout:Union[int,float,None]=None)->Any:
        """Lease a free resource and return it, or None if every resource is locked.

        Without a timeout a single scan is made. With a timeout (milliseconds) scans are repeated,
        sleeping min(poll_interval, remaining) between them, until a scan succeeds or the deadline passes.
        Errors raised by the driver or by the key/expires callables abort the call.
        """
        if timeout is not None and (isinstance(timeout,bool) or not isinstance(timeout,(int,float)) or not math.isfinite(timeout) or timeout < 0):
            raise ResourcePoolConfigError(f"timeout must be a finite, non-negative number of milliseconds (current {timeout!r})")
        if not timeout:
            return await self._scan()

        with ElapsedTimer() as elapsed:
            deadline = time.monotonic() + (timeout / 1000)
            while True:
                resource = await self._scan()
                if resource is not None:
                    return resource
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.logDebug(f"No resource became free within {timeout}ms {elapsed.text()}")
                    return None
                wait = min(self.poll_interval / 1000, remaining)
                self.logDebug(f"All {self.size()} resources are locked. Waiting {wait:.3f} seconds to try again... {elapsed.text()}")
                await asyncio.sleep(wait)

    async def release(self,resource:Any)->bool:
        """Unlock the resource. There is no ownership check: any caller can release any resource."""
        key = await self.get_key(resource)
        result = await self.driver.unlock(key)
        self.logDebug(f"Resource '{key}' released")
        return result

    def lease(self,timeout:Union[int,float,None]=None)->ResourcePoolLease:
        return ResourcePoolLease(pool=self,timeout=timeout)
