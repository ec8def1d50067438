import math

import pytest

from relay_service.tools.calculator_tool import CalculatorTool


@pytest.fixture
def calculator():
    return CalculatorTool()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "expression, expected",
    [
        ("2 + 3", 5),
        ("2 + 3 * 4", 14),
        ("(2 + 3) * 4", 20),
        ("sqrt(16)", 4.0),
        ("sin(0)", 0.0),
        ("pow(2, 8)", 256.0),
        ("2 ** 10", 1024),
        ("log(e)", 1.0),
        ("max(5, 10, 3)", 10),
        ("-7 % 3", 2),
        ("cbrt(-27)", -3.0),
        ("sign(-4)", -1),
    ],
)
async def test_expressions(calculator, expression, expected):
    result = await calculator.run(expression=expression)
    assert result["success"] is True
    assert result["mode"] == "real"
    assert result["result"] == pytest.approx(expected)


@pytest.mark.asyncio
async def test_pi(calculator):
    result = await calculator.run(expression="2 * pi")
    assert result["result"] == pytest.approx(2 * math.pi)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "expression, message",
    [
        ("1 / 0", "Division by zero"),
        ("sqrt(-1)", "Math domain error"),
        ("foo(1)", "Unknown function or constant: foo"),
        ("x + 1", "Unknown function or constant: x"),
        ("2 +", "Syntax error"),
        ("__import__('os')", "Unknown function or constant: __import__"),
        ("(1).real", "Unsupported syntax"),
        ("[1, 2]", "Unsupported syntax"),
        ("'a' * 3", "Unsupported syntax"),
        ("10 ** 100000", "Exponent too large"),
        ("exp(1000)", "math range error"),
    ],
)
async def test_rejected_expressions(calculator, expression, message):
    result = await calculator.run(expression=expression)
    assert result["success"] is False
    assert message in result["error"]
    assert result["expression"] == expression


@pytest.mark.asyncio
async def test_empty_expression(calculator):
    result = await calculator.run(expression="")
    assert result == {"success": False, "error": "Expression is required and must be a string"}
    result = await calculator.run(expression="   ")
    assert result["error"] == "Empty expression"


def test_schema(calculator):
    calculator._registry_name = "calculator"
    schema = calculator.schema
    assert schema["name"] == "calculator"
    assert "sqrt" in schema["description"]
    assert schema["input_schema"] == {
        "type": "object",
        "properties": {"expression": {"type": "string", "description": 'The expression to evaluate, e.g. "sqrt(16) + 2 * pi".'}},
        "required": ["expression"],
    }
