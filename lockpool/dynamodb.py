#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations
"""
DynamoDB lock driver for lockpool. One item per lock key in a table with a single hash key
'lock_key'. Acquiring is a conditional put_item, so any number of processes, containers or lambdas
can share the same table.

License: MIT

"""
import json, math, time, asyncio
from threading import Lock
from typing import Union
from uuid import uuid4
from boto3.dynamodb.conditions import Attr, Or
from boto3.dynamodb.table import TableResource as DynamoDBTableResource
from botocore.client import BaseClient
from botocore.exceptions import ClientError

from lockpool.lockpool import LockDriver, ElapsedTimer, ResourcePoolLogging, ResourcePoolWarmUpException

__all__ = ['DynamoDBLockDriver','create_lock_table']

KEY_NAME = "lock_key"
EXPIRATION_NAME = "expiration_time"  # epoch milliseconds, used by the put condition
TTL_NAME = "ttl"                     # epoch seconds, used by the DynamoDB native TTL to purge stale items

def _error_code(error:ClientError)->str:
    return error.response.get("Error",{}).get("Code","")

class DynamoDBLockDriver(LockDriver):
    """
    Lock driver backed by a DynamoDB table.

    Parameters:
        dynamodb_table_resource (DynamoDBTableResource):
            A DynamoDB Table Resource previously configured with your access credentials, region and extra settings.
            The table does not need to exist: it is created on first use when auto_provision is True.

        auto_provision (bool, default=True):
            Create the table (see create_lock_table) the first time DynamoDB answers ResourceNotFoundException.

        verbose (bool, default=False) / debug (bool, default=False):
            Print informational / debug messages.

        **table_kwargs:
            Extra parameters given to create_lock_table() when provisioning (billing_mode, table_class, tags...).

    Usage:

        import boto3
        from lockpool import ResourcePool, DynamoDBLockDriver
        table = boto3.resource("dynamodb").Table("locks-table")
        pool = ResourcePool(driver=DynamoDBLockDriver(table),resources=shards,key=lambda s: s.name,expires=60_000)
    """
    def __init__(self,
                 dynamodb_table_resource:DynamoDBTableResource, # the table holding the locks
                 auto_provision:bool=True,                      # create the table on first use if missing
                 verbose:bool=False,                            # print messages
                 debug:bool=False,                              # print debug messages
                 **table_kwargs,                                # extra parameters for create_lock_table()
                 )->None:
        if not isinstance(dynamodb_table_resource,DynamoDBTableResource):
            raise AttributeError(f"The provided dynamodb_table_resource parameter is not a valid boto3.dynamodb.table.TableResource (current class {type(dynamodb_table_resource)})") from None
        self.ddb_table = dynamodb_table_resource
        self.auto_provision = auto_provision
        self.table_kwargs = table_kwargs

        self.__verbose = verbose
        self.__classLogging = self._get_logger(verbose,debug)
        self.logDebug = self.__classLogging.debug
        self.logInfo = self.__classLogging.info

        self._threadsafe_provision_lock:Lock = Lock()
        self.__provisioned = False

    async def lock(self,key:str,ttl:Union[int,float])->bool:
        self._validate(key,ttl)
        return await asyncio.to_thread(self._put_lock,key,ttl)

    async def unlock(self,key:str)->bool:
        return await asyncio.to_thread(self._delete_lock,key)

    def _put_lock(self,key:str,ttl:Union[int,float],retry_on_missing_table:bool=True)->bool:
        """Conditional put. True if the item was written, False if an unexpired item is already there."""
        with ElapsedTimer() as elapsed:
            now = int(time.time()*1000)
            expiration = now + math.ceil(ttl)
            try:
                self.ddb_table.put_item(Item={KEY_NAME: key,
                                              EXPIRATION_NAME: expiration,
                                              TTL_NAME: math.ceil(expiration/1000)},
                                        ConditionExpression=Or(Attr(KEY_NAME).not_exists(),Attr(EXPIRATION_NAME).lt(now)))
            except ClientError as ERR:
                code = _error_code(ERR)
                if code == "ConditionalCheckFailedException":
                    self.logDebug(f"Lock '{key}' is already acquired by another process {elapsed.text()}")
                    return False
                if code == "ResourceNotFoundException" and self.auto_provision and retry_on_missing_table:
                    self.logInfo(f"Table '{self.ddb_table.name}' not found, provisioning it {elapsed.text()}")
                    self._provision_table()
                    return self._put_lock(key,ttl,retry_on_missing_table=False)
                raise
            self.logDebug(f"Lock '{key}' successfully acquired until {expiration} {elapsed.text()}")
            return True

    def _delete_lock(self,key:str)->bool:
        with ElapsedTimer() as elapsed:
            self.ddb_table.delete_item(Key={KEY_NAME: key})
            self.logDebug(f"Lock '{key}' successfully released {elapsed.text()}")
            return True

    def _provision_table(self)->None:
        """Create the table once per driver. Concurrent callers wait for the first one to finish."""
        with self._threadsafe_provision_lock:
            if self.__provisioned:
                return
            create_lock_table(self.ddb_table.name,self.ddb_table.meta.client,verbose=self.__verbose,raise_on_exception=True,**self.table_kwargs)
            self.__provisioned = True

    async def warmup(self)->bool:
        """Put, read back and delete a throwaway lock to check the table is available and working."""
        return await asyncio.to_thread(self._warmup)

    def _warmup(self)->bool:
        warmup_key = f'warmup_lock_{str(uuid4())}'
        with ElapsedTimer() as elapsed:
            try:
                if not self._put_lock(warmup_key,2000):
                    raise Exception("the warm-up lock was reported as already held")
                item = self.ddb_table.get_item(Key={KEY_NAME: warmup_key},ConsistentRead=True).get("Item")
                if item is None or item.get(KEY_NAME) != warmup_key:
                    raise Exception("Error in get_item response")
                self._delete_lock(warmup_key)
            except Exception as ERR:
                raise ResourcePoolWarmUpException(f"Failed at warm-up on table '{self.ddb_table.name}'! {str(ERR)}") from None
            self.logInfo(f"Warm-Up finished {elapsed.text()}.")
        return True

def create_lock_table(table_name:str,boto3_client:BaseClient,verbose:bool=True,raise_on_exception:bool=False,**kwargs)->bool:
    """
    Creates a DynamoDB table intended to store the locks of DynamoDBLockDriver.

    **This function does not handle credentials or access keys, you need to provide an already instantiated
    boto3 client with your credentials data**.

    The table is created with:

    - Primary key: 'lock_key' (type 'S')
    - Billing mode: 'PAY_PER_REQUEST'
    - TTL (Time to Live) enabled on attribute 'ttl'
    - Table class: 'STANDARD'

    If the table is being created by someone else at the same time (ResourceInUseException), this
    function waits for it to become ACTIVE and reports success.

    Parameters:
        table_name (str): The name of the DynamoDB table to be created.
        boto3_client (BaseClient): An existing boto3 DynamoDB client.
        verbose (bool, optional): If True, prints progress and validation messages. Default is True.
        raise_on_exception (bool, optional): If True, raises exceptions instead of returning False on failure. Default is False.
        **kwargs: Additional parameters to customize table creation:
            - billing_mode (str): 'PAY_PER_REQUEST' or 'PROVISIONED'. Default is 'PAY_PER_REQUEST'.
            - table_class (str): 'STANDARD' or 'STANDARD_INFREQUENT_ACCESS'. Default is 'STANDARD'.
            - delete_protection (bool): Enable deletion protection. Default is False.
            - read_capacity_units (int): Provisioned read capacity (required if billing_mode is 'PROVISIONED').
            - write_capacity_units (int): Provisioned write capacity (required if billing_mode is 'PROVISIONED').
            - tags (list): List of tags in format [{'Key': ..., 'Value': ...}].

    Returns:

        bool: True if the table exists and TTL is configured, False if failed and raise_on_exception is False.

    Example:
        >>> create_lock_table(
        ...     table_name="my_lock_table",
        ...     boto3_client=boto3.client("dynamodb"),
        ...     billing_mode="PROVISIONED",
        ...     read_capacity_units=5,
        ...     write_capacity_units=5,
        ...     raise_on_exception=True
        ... )
    """
    log = ResourcePoolLogging(verbose=verbose,info_prefix="> ")

    def fail(error_message:str,exception_class=ValueError)->bool:
        log.info(error_message)
        if raise_on_exception: raise exception_class(error_message) from None
        return False

    try:
        service_name = boto3_client.meta.service_model.service_name
    except Exception as ERR:
        return fail(f"The parameter provided in boto3_client does not appear to be a valid AWS client - Error: {str(ERR)}",AttributeError)
    if service_name != 'dynamodb':
        return fail(f"The provided boto3_client is not a client of the DynamoDB service (expected: dynamodb, current: {service_name})",AttributeError)

    with ElapsedTimer() as elapsed:
        DDBTableParams = {'TableName':table_name,
                          'AttributeDefinitions':[{'AttributeName':KEY_NAME,'AttributeType':'S'}],
                          'KeySchema':[{'AttributeName':KEY_NAME,'KeyType':'HASH'}]}
        DDBTableTTLParams = {'TableName':table_name,'TimeToLiveSpecification':{'Enabled':True,'AttributeName':TTL_NAME}}
        ##──── Billing Mode ──────────────────────────────────────────────────────────────────────────────────────────────────────────────
        billing_mode = str(kwargs.get("billing_mode","PAY_PER_REQUEST")).upper()
        if billing_mode not in ["PROVISIONED","PAY_PER_REQUEST"]:
            return fail("Invalid billing_mode parameter: Accepted values are PROVISIONED or PAY_PER_REQUEST.")
        DDBTableParams.update({'BillingMode':billing_mode})
        ##──── Provisioned Throughput ────────────────────────────────────────────────────────────────────────────────────────────────────
        if billing_mode == "PROVISIONED":
            read_capacity = kwargs.get("read_capacity_units",None)
            write_capacity = kwargs.get("write_capacity_units",None)
            if not (isinstance(read_capacity,int) and isinstance(write_capacity,int) and read_capacity > 0 and write_capacity > 0):
                return fail("Invalid Provisioned Throughput parameters: read_capacity_units and write_capacity_units must be positive integers.")
            DDBTableParams.update({'ProvisionedThroughput':{'ReadCapacityUnits':read_capacity,'WriteCapacityUnits':write_capacity}})
        ##──── Table class ───────────────────────────────────────────────────────────────────────────────────────────────────────────────
        table_class = str(kwargs.get("table_class","STANDARD")).upper()
        if table_class not in ["STANDARD","STANDARD_INFREQUENT_ACCESS"]:
            return fail("Invalid table_class parameter: Accepted values are STANDARD or STANDARD_INFREQUENT_ACCESS.")
        DDBTableParams.update({'TableClass':table_class})
        ##──── Delete Protection ─────────────────────────────────────────────────────────────────────────────────────────────────────────
        delete_protection = kwargs.get("delete_protection",False)
        if not isinstance(delete_protection,bool):
            return fail("Invalid delete_protection parameter: Accepted values are True or False.")
        DDBTableParams.update({'DeletionProtectionEnabled':delete_protection})
        ##──── Tags ──────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
        tags = kwargs.get("tags",None)
        if tags:
            if not isinstance(tags,list) or not all(isinstance(tag,dict) and set(tag.keys()) == {'Key','Value'}
                                                    and isinstance(tag['Key'],str) and isinstance(tag['Value'],str) for tag in tags):
                return fail("Invalid tags parameter: the value of tags must be a list of dict like [{'Key':'key_name','Value':'key_value'}]")
            DDBTableParams.update({'Tags':tags})
        ##────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
        log.info(f"Parameters to create table '{table_name}' successfully validated! {elapsed.text()}")
        log.info(json.dumps(DDBTableParams,indent=3,sort_keys=False,ensure_ascii=False,default=str))
        try:
            created_here = True
            try:
                boto3_client.create_table(**DDBTableParams)
                log.info(f"Creating table '{table_name}' in region '{boto3_client.meta.region_name}'.")
            except ClientError as ERR:
                if _error_code(ERR) != "ResourceInUseException":
                    raise
                created_here = False
                log.info(f"Table '{table_name}' is already being created, waiting for it.")
            boto3_client.get_waiter("table_exists").wait(TableName=table_name)
            log.info(f"Table '{table_name}' is active! {elapsed.text()}")
            if not created_here:
                return True
            boto3_client.update_time_to_live(**DDBTableTTLParams)
            log.info(f"Successfully updated TTL information on table '{table_name}'! {elapsed.text()}")
        except Exception as ERR:
            log.info(f"Failed at create_lock_table ({table_name}): {str(ERR)} {elapsed.text()}")
            if raise_on_exception: raise
            return False
    return True
