from decimal import Decimal

import pytest

from common.money import Money
from common.related import RelatedRef


def test_decimal_addition_is_exact():
    assert Money('0.10') + Money('0.20') == Money('0.30')
    assert Money('0.1') + '0.2' == Decimal('0.3')


def test_floats_and_booleans_are_rejected():
    with pytest.raises(TypeError):
        Money(0.1)
    with pytest.raises(TypeError):
        Money(True)


def test_invalid_string():
    with pytest.raises(ValueError):
        Money('ten')
    with pytest.raises(ValueError):
        Money('NaN')


def test_fixed_point_string():
    assert Money('150').to_string() == '150.00'
    assert str(Money('-3.5')) == '-3.50'
    assert repr(Money('7')) == "Money('7.00')"


def test_quantize_rounds_half_up():
    assert Money('2.005').quantize() == Money('2.01')
    assert Money('2.004').quantize() == Money('2.00')


def test_equality_ignores_scale():
    assert Money('1.0') == Money('1.00')
    assert hash(Money('1.0')) == hash(Money('1.00'))
    assert len({Money('5'), Money('5.00')}) == 1


def test_ordering_and_predicates():
    assert Money('49.99') < Money('50')
    assert Money('50') >= '50.00'
    assert Money(0).is_zero()
    assert not Money(0)
    assert Money('-1').is_negative()
    assert Money('1').is_positive()
    assert Money('30').min('20') == Money('20')


def test_scalar_multiplication():
    assert Money('100') * Decimal('0.5') == Money('50')
    assert 3 * Money('1.10') == Money('3.30')
    with pytest.raises(TypeError):
        Money('1') * Money('2')


def test_sum_and_negation():
    assert Money.sum(['1.10', Money('2.20'), 3]) == Money('6.30')
    assert Money.sum([]) == Money.zero()
    assert -Money('4') == Money('-4')
    assert abs(Money('-4')) == Money('4')
    assert 10 - Money('2.5') == Money('7.5')


def test_money_is_immutable():
    m = Money('1')
    with pytest.raises(AttributeError):
        m.amount = Decimal('2')


def test_related_ref_round_trip():
    ref = RelatedRef.deposit(12)
    assert ref.to_dict() == {'kind': 'deposit', 'id': 12}
    assert RelatedRef.from_dict({'kind': 'deposit', 'id': 12}) == ref
    assert ref.is_deposit()
    assert RelatedRef.from_dict(None) is None


@pytest.mark.parametrize('data', [
    {'kind': 'invoice', 'id': 1},
    {'kind': 'deposit', 'id': 0},
    {'kind': 'deposit', 'id': '3'},
    {'kind': 'deposit'},
    {'kind': 'deposit', 'id': 1, 'extra': True},
    ['deposit', 1],
])
def test_related_ref_rejects_malformed(data):
    with pytest.raises(ValueError):
        RelatedRef.from_dict(data)
