"""Tests for the typed filter expression builders."""

import math

import pytest

from scene_assembler.render.filters import (
    IW,
    PI,
    T,
    BinOp,
    FilterChain,
    Neg,
    Num,
    Var,
    between,
    format_number,
    if_,
    is_well_formed,
    lt,
    make_filter,
    pow_,
    render_value,
    sin,
)


class TestFormatNumber:
    """Tests for compact number rendering."""

    def test_integral_floats_drop_decimals(self):
        assert format_number(2.0) == "2"
        assert format_number(1920) == "1920"

    def test_trailing_zeros_trimmed(self):
        assert format_number(0.18) == "0.18"
        assert format_number(0.1 + 0.2) == "0.3"

    def test_tiny_values_round_to_zero(self):
        assert format_number(1e-9) == "0"

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            format_number(True)


class TestExpressionRendering:
    """Tests for precedence-aware rendering."""

    def test_operator_overloads_build_tree(self):
        expr = 1 + 0.18 * (T / 5)
        assert isinstance(expr, BinOp)
        assert expr.render() == "1+0.18*t/5"

    def test_right_operand_of_subtraction_is_parenthesised(self):
        expr = BinOp("-", Var("a"), BinOp("-", Var("b"), Var("c")))
        assert expr.render() == "a-(b-c)"

    def test_lower_precedence_operand_is_parenthesised(self):
        expr = (T + 1) * 2
        assert expr.render() == "(t+1)*2"

    def test_negative_literals_are_parenthesised(self):
        assert Num(-2).render() == "(-2)"
        assert (Num(-2) * T).render() == "(-2)*t"

    def test_negation_of_binop(self):
        assert Neg(T - 1).render() == "-(t-1)"

    def test_function_calls(self):
        assert sin(PI * T).render() == "sin(PI*t)"
        assert pow_(T, 3).render() == "pow(t,3)"
        assert between(T, 0.7, 5.7).render() == "between(t,0.7,5.7)"

    def test_non_numeric_operand_rejected(self):
        with pytest.raises(TypeError):
            T + "1"


class TestExpressionEvaluation:
    """Tests for numeric evaluation of expression trees."""

    def test_arithmetic(self):
        expr = (T + 1) * 2 - T / 4
        assert expr.evaluate({"t": 4}) == pytest.approx(9.0)

    def test_pi_is_builtin(self):
        assert PI.evaluate({}) == pytest.approx(math.pi)

    def test_unbound_variable(self):
        with pytest.raises(KeyError, match="iw"):
            (IW * 2).evaluate({"t": 1})

    def test_conditional(self):
        expr = if_(lt(T, 0.5), 10, 20)
        assert expr.evaluate({"t": 0.2}) == 10
        assert expr.evaluate({"t": 0.7}) == 20

    def test_between_is_inclusive(self):
        expr = between(T, 1, 2)
        assert expr.evaluate({"t": 1}) == 1.0
        assert expr.evaluate({"t": 2}) == 1.0
        assert expr.evaluate({"t": 2.01}) == 0.0


class TestFilters:
    """Tests for Filter and FilterChain lowering."""

    def test_positional_and_named_options(self):
        f = make_filter("scale", 1920, 1080, force_original_aspect_ratio="decrease")
        assert f.render() == "scale=1920:1080:force_original_aspect_ratio=decrease"

    def test_expression_options_are_quoted(self):
        f = make_filter("crop", w=1920, x=T * 2, y=T)
        assert f.render() == "crop=w=1920:x='t*2':y=t"

    def test_bare_filter(self):
        assert make_filter("anull").render() == "anull"

    def test_render_value_bool(self):
        assert render_value(True) == "1"

    def test_chain_joins_with_commas(self):
        chain = FilterChain([make_filter("fps", 30)])
        chain.append(make_filter("format", "yuv420p"))
        chain.append("drawtext=text='hi'")
        chain.append("")
        assert chain.render() == "fps=30,format=yuv420p,drawtext=text='hi'"
        assert chain.names() == ["fps", "format", "drawtext"]
        assert len(chain) == 3

    def test_chain_extends_with_chain(self):
        chain = FilterChain([make_filter("fps", 30)])
        chain.append(FilterChain([make_filter("crop", 10, 10)]))
        assert chain.names() == ["fps", "crop"]

    def test_empty_chain_is_falsy(self):
        assert not FilterChain()
        assert FilterChain().render() == ""


class TestWellFormed:
    """Tests for the syntax sanity check."""

    def test_balanced(self):
        assert is_well_formed("crop=w=10:x='if(lt(t,1),0,(t-1)*2)'")

    def test_unbalanced_parenthesis(self):
        assert not is_well_formed("scale=w='iw*(1+t'")
        assert not is_well_formed("x=)(")

    def test_unclosed_quote(self):
        assert not is_well_formed("crop=x='t*2")
