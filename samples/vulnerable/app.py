"""Deliberately unsafe handler used to exercise the scanner."""

import hashlib
import sqlite3

import requests

API_TOKEN = "tok_live_4f9c2e7b1a"


def handler(event, _context):
    expression = event.get("expression", "0")
    result = eval(expression)

    connection = sqlite3.connect(":memory:")
    cursor = connection.cursor()
    cursor.execute("SELECT * FROM users WHERE name = '%s'" % event.get("name"))

    digest = hashlib.md5(str(result).encode()).hexdigest()
    requests.get("https://internal.example.test/audit", params={"d": digest}, verify=False, timeout=5)
    return {"result": result, "digest": digest}
