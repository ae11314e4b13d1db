from marshmallow import Schema, fields, validate, ValidationError, validates_schema, post_load
from marshmallow.validate import Range, Length

from .models import GameConfig, ReelSet, Ruleset


class SymbolSchema(Schema):
    id = fields.Integer(required=True, validate=Range(min=1))
    name = fields.String(required=True, validate=Length(min=1))
    icon = fields.String(load_default="")
    line_payouts = fields.List(fields.Float(validate=Range(min=0)), load_default=list)
    scatter_payouts = fields.List(fields.Float(validate=Range(min=0)), load_default=list)
    free_spins = fields.List(fields.Integer(validate=Range(min=0)), load_default=list)


class PaylineSchema(Schema):
    id = fields.Integer(required=True, validate=Range(min=1))
    rows = fields.List(fields.Integer(), required=True, validate=Length(min=1))


class LayoutSchema(Schema):
    rows = fields.Integer(required=True, validate=Range(min=1))
    columns = fields.Integer(required=True, validate=Range(min=1))
    paylines = fields.List(fields.Nested(PaylineSchema), required=True, validate=Length(min=1))

    @validates_schema
    def validate_paylines(self, data, **kwargs):
        rows, columns = data['rows'], data['columns']
        seen_ids = set()
        for i, payline in enumerate(data['paylines']):
            if payline['id'] in seen_ids:
                raise ValidationError(f"Duplicate payline id {payline['id']}.", field_name='paylines')
            seen_ids.add(payline['id'])
            if len(payline['rows']) != columns:
                raise ValidationError(
                    f"paylines[{i}] must list one row per column ({columns}), got {len(payline['rows'])}.",
                    field_name='paylines')
            for row in payline['rows']:
                if not 1 <= row <= rows:
                    raise ValidationError(
                        f"paylines[{i}] row {row} out of bounds (rows: {rows}).", field_name='paylines')


class ReelStripsSchema(Schema):
    regular = fields.List(fields.List(fields.Integer(), validate=Length(min=1)), required=True)
    bonus = fields.List(fields.List(fields.Integer(), validate=Length(min=1)), required=True)


class GameSchema(Schema):
    name = fields.String(required=True, validate=Length(min=1))
    short_name = fields.String(required=True, validate=Length(min=1))
    layout = fields.Nested(LayoutSchema, required=True)
    symbols = fields.List(fields.Nested(SymbolSchema), required=True, validate=Length(min=1))
    wild_symbol_id = fields.Integer(required=True)
    scatter_symbol_id = fields.Integer(required=True)
    wild_multiplier = fields.Float(load_default=2, validate=Range(min=1))
    free_spin_multiplier = fields.Float(load_default=3, validate=Range(min=1))
    line_min = fields.Integer(load_default=2, validate=Range(min=1))
    scatter_min = fields.Integer(load_default=2, validate=Range(min=1))
    reel_strips = fields.Nested(ReelStripsSchema, required=True)

    @validates_schema
    def validate_symbols(self, data, **kwargs):
        columns = data['layout']['columns']
        symbol_ids = [s['id'] for s in data['symbols']]
        if len(set(symbol_ids)) != len(symbol_ids):
            raise ValidationError("Symbol ids must be unique.", field_name='symbols')

        wild, scatter = data['wild_symbol_id'], data['scatter_symbol_id']
        if wild == scatter:
            raise ValidationError("Wild and scatter must be different symbols.", field_name='scatter_symbol_id')
        for key, s_id in (('wild_symbol_id', wild), ('scatter_symbol_id', scatter)):
            if s_id not in symbol_ids:
                raise ValidationError(f"Symbol {s_id} is not defined in symbols.", field_name=key)
        if data['line_min'] > columns:
            raise ValidationError(f"line_min cannot exceed the column count ({columns}).", field_name='line_min')

        for sym in data['symbols']:
            if sym['line_payouts'] and len(sym['line_payouts']) != columns:
                raise ValidationError(
                    f"Symbol {sym['id']} line_payouts must have one entry per run length 1..{columns}.",
                    field_name='symbols')
            if sym['id'] == scatter and any(p > 0 for p in sym['line_payouts']):
                raise ValidationError("The scatter symbol cannot pay on lines.", field_name='symbols')
            if sym['id'] != scatter and (sym['scatter_payouts'] or sym['free_spins']):
                raise ValidationError(
                    f"Symbol {sym['id']} is not the scatter but defines scatter_payouts/free_spins.",
                    field_name='symbols')
            if sym['scatter_payouts'] and sym['free_spins'] and len(sym['scatter_payouts']) != len(sym['free_spins']):
                raise ValidationError("scatter_payouts and free_spins must have the same length.", field_name='symbols')

    @validates_schema
    def validate_reel_strips(self, data, **kwargs):
        columns = data['layout']['columns']
        symbol_ids = {s['id'] for s in data['symbols']}
        for set_name in ('regular', 'bonus'):
            strips = data['reel_strips'][set_name]
            if len(strips) != columns:
                raise ValidationError(
                    f"reel_strips.{set_name} has {len(strips)} strips, expected one per column ({columns}).",
                    field_name='reel_strips')
            for i, strip in enumerate(strips):
                unknown = sorted(set(strip) - symbol_ids)
                if unknown:
                    raise ValidationError(
                        f"reel_strips.{set_name}[{i}] uses undefined symbols {unknown}.", field_name='reel_strips')


class GameConfigSchema(Schema):
    game = fields.Nested(GameSchema, required=True)

    @post_load
    def make_game_config(self, data, **kwargs):
        game = data['game']
        layout = game['layout']
        columns = layout['columns']
        scatter = game['scatter_symbol_id']

        paytable = {}
        scatter_payouts, scatter_free_spins = (), ()
        for sym in game['symbols']:
            paytable[sym['id']] = tuple(sym['line_payouts']) if sym['line_payouts'] else (0,) * columns
            if sym['id'] == scatter:
                scatter_payouts = tuple(sym['scatter_payouts'])
                scatter_free_spins = tuple(sym['free_spins']) or (0,) * len(scatter_payouts)

        ruleset = Ruleset(
            columns=columns,
            rows=layout['rows'],
            wild_symbol_id=game['wild_symbol_id'],
            scatter_symbol_id=scatter,
            paylines=tuple(tuple(pl['rows']) for pl in layout['paylines']),
            paytable=paytable,
            scatter_payouts=scatter_payouts,
            scatter_free_spins=scatter_free_spins,
            wild_multiplier=game['wild_multiplier'],
            free_spin_multiplier=game['free_spin_multiplier'],
            line_min=game['line_min'],
            scatter_min=game['scatter_min'],
        )
        strips = game['reel_strips']
        return GameConfig(
            name=game['name'],
            short_name=game['short_name'],
            ruleset=ruleset,
            regular_reels=ReelSet('regular', tuple(tuple(s) for s in strips['regular'])),
            bonus_reels=ReelSet('bonus', tuple(tuple(s) for s in strips['bonus'])),
        )


class WinLineSchema(Schema):
    line_id = fields.Raw()
    symbol_id = fields.Integer()
    count = fields.Integer()
    positions = fields.List(fields.List(fields.Integer()))
    pay = fields.Float()
    multiplier = fields.Float()
    win_amount = fields.Float()
    free_spins = fields.Integer()


class ReelSetReportSchema(Schema):
    line_rtp = fields.Float()
    scatter_rtp = fields.Float()
    symbol_rtp = fields.Float()
    q = fields.Float()
    sq = fields.Float(allow_none=True)
    free_spin_hit_rate = fields.Float()


class RTPReportSchema(Schema):
    source = fields.String(validate=validate.OneOf(["exact", "simulation"]))
    regular = fields.Nested(ReelSetReportSchema)
    bonus = fields.Nested(ReelSetReportSchema)
    free_spin_rtp = fields.Float()
    total_rtp = fields.Float()
