from __future__ import annotations

import os
import uuid

import boto3

from facetdb_py import Entity, Service


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


TASK = {
    "model": {"service": "taskapp", "entity": "task", "version": "1"},
    "attributes": {"task_id": "string", "project": "string", "employee": "string", "status": ["open", "closed"]},
    "indexes": {
        "task": {
            "pk": {"field": "pk", "composite": ["task_id"]},
            "sk": {"field": "sk", "composite": ["project"]},
        },
        "assigned": {
            "index": "gsi1",
            "collection": "assignments",
            "pk": {"field": "gsi1pk", "composite": ["employee"]},
            "sk": {"field": "gsi1sk", "composite": ["status"]},
        },
    },
}

EMPLOYEE = {
    "model": {"service": "taskapp", "entity": "employee", "version": "1"},
    "attributes": {"employee": "string", "office": "string"},
    "indexes": {
        "employee": {
            "pk": {"field": "pk", "composite": ["employee"]},
            "sk": {"field": "sk", "composite": []},
        },
        "tasks": {
            "index": "gsi1",
            "collection": "assignments",
            "pk": {"field": "gsi1pk", "composite": ["employee"]},
            "sk": {"field": "gsi1sk", "composite": []},
        },
    },
}


def main() -> None:
    client = _client()
    table_name = f"facetdb_py_example_{uuid.uuid4().hex[:12]}"

    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": name, "AttributeType": "S"} for name in ("pk", "sk", "gsi1pk", "gsi1sk")
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "gsi1",
                "KeySchema": [
                    {"AttributeName": "gsi1pk", "KeyType": "HASH"},
                    {"AttributeName": "gsi1sk", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        tasks = Entity(TASK, client=client, table=table_name)
        employees = Entity(EMPLOYEE, client=client, table=table_name)
        service = Service([tasks, employees])

        employees.put({"employee": "e1", "office": "hq"}).go()
        tasks.put({"task_id": "t1", "project": "p1", "employee": "e1", "status": "open"}).go()
        tasks.put({"task_id": "t2", "project": "p1", "employee": "e1", "status": "closed"}).go()

        print("get:", tasks.get({"task_id": "t1", "project": "p1"}).go().data)
        print("open tasks:", tasks.query.assigned(employee="e1", status="open").go().data)
        print("assignments:", service.collections.assignments(employee="e1").go(pages="all").data)
    finally:
        client.delete_table(TableName=table_name)


if __name__ == "__main__":
    main()
