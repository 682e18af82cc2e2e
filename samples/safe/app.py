"""Handler that keeps secrets out of code and parameterizes queries."""

import ast
import hashlib
import os
import sqlite3


def handler(event, _context):
    expression = event.get("expression", "0")
    result = ast.literal_eval(expression)

    connection = sqlite3.connect(os.environ.get("DB_PATH", ":memory:"))
    cursor = connection.cursor()
    cursor.execute("SELECT * FROM users WHERE name = ?", (event.get("name"),))

    digest = hashlib.sha256(str(result).encode()).hexdigest()
    return {"result": result, "digest": digest}
