from flask import Flask, request, jsonify
from flask_cors import CORS
import compiler_phases

app = Flask(__name__)
app.config.from_mapping(
    COMPILER_DEFAULT_PHASE="target",
    COMPILER_MAX_SOURCE_LENGTH=100_000,
)
app.config.from_prefixed_env()  # e.g. FLASK_COMPILER_MAX_SOURCE_LENGTH=5000
CORS(app)  # allow cross-origin requests


def token_to_dict(token):
    return {
        "type": token.kind,
        "value": token.value,
        "line": token.line,
        "column": token.column,
    }


def ast_to_dict(node):
    """
    Serialize AST to dict recursively
    """
    if node is None:
        return None
    d = {"type": node.kind}
    if node.value is not None:
        d["value"] = node.value
    children = node.children
    if children:
        d["children"] = [ast_to_dict(c) for c in children]
    return d


def empty_response(errors):
    return {
        "tokens": [],
        "ast": {},
        "symbol_table": {},
        "tac": [],
        "optimized_tac": [],
        "assembly": [],
        "errors": errors,
    }


def request_error(message, status):
    app.logger.info("Rejected compile request: %s", message)
    return jsonify(empty_response([{
        "phase": "request",
        "message": message,
        "line": None,
        "column": None,
    }])), status


@app.route("/phases", methods=["GET"])
def list_phases():
    return jsonify({"phases": list(compiler_phases.PHASES)})


@app.route("/compile", methods=["POST"])
def compile_code():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return request_error("Request body must be a JSON object", 400)
    code = data.get("code", "")
    if not isinstance(code, str):
        return request_error("'code' must be a string", 400)
    phase = data.get("phase") or app.config["COMPILER_DEFAULT_PHASE"]
    if phase not in compiler_phases.PHASES:
        return request_error(f"Unknown phase: {phase}", 400)
    if len(code) > app.config["COMPILER_MAX_SOURCE_LENGTH"]:
        return request_error("Source code is too long", 413)

    try:
        result = compiler_phases.compile_source(code, until=phase)
    except Exception as e:
        app.logger.exception("Unexpected error during compilation")
        return jsonify(empty_response([{
            "phase": "internal",
            "message": f"Unexpected error: {str(e)}",
            "line": None,
            "column": None,
        }])), 500

    table = result["symbol_table"]
    response = {
        "tokens": [token_to_dict(t) for t in result["tokens"]],
        "ast": ast_to_dict(result["ast"]) if result["ast"] else {},
        "symbol_table": table.to_dict() if table is not None else {},
        "tac": [repr(t) for t in result["tac"]],
        "optimized_tac": [repr(t) for t in result["optimized_tac"]],
        "assembly": result["asm"],
        "errors": result["errors"],
    }
    return jsonify(response)


if __name__ == "__main__":
    app.run(debug=app.config.get("DEBUG", False))
