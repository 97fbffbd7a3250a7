#!/usr/bin/env python3

import argparse
from collections import Counter
from dataclasses import dataclass
import datetime
from decimal import Decimal, ROUND_CEILING
import json
import logging
import re
import sys
from typing import ClassVar

logger = logging.getLogger(__name__)


class CallParseError(Exception):
    pass


class InvalidCallError(CallParseError, ValueError):
    '''
    The line is well formed but breaks a billing rule: the phone number is
    not made of digits, or the call does not start before it ends.
    '''


class MalformedTimestampError(CallParseError, ValueError):
    pass


class MalformedLineError(CallParseError, ValueError):
    pass


#
# Tariff, in currency units per started minute
#
DAY_MINUTE_PRICE = Decimal('1.00')
NIGHT_MINUTE_PRICE = Decimal('0.50')
LONG_CALL_MINUTE_PRICE = Decimal('0.20')
LONG_CALL_MINUTES = 5

SIXTY_SECONDS = Decimal(60)
TIMESTAMP_FORMAT = '%d-%m-%Y %H:%M:%S'

phone_number_pattern = re.compile(r'[0-9]+')
timestamp_pattern = re.compile(
    r'[0-9]{2}-[0-9]{2}-[0-9]{4} [0-9]{2}:[0-9]{2}:[0-9]{2}'
)


def parse_timestamp(text):
    '''
    Parse a 'dd-mm-yyyy HH:MM:SS' timestamp. strptime on its own accepts
    unpadded fields, so the shape is checked first.
    '''
    if not timestamp_pattern.fullmatch(text):
        raise MalformedTimestampError(f'Error parsing timestamp {text!r}')
    try:
        return datetime.datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError as e:
        raise MalformedTimestampError(
            f'Error parsing timestamp {text!r}'
        ) from e


@dataclass(frozen=True)
class CallRecord:
    '''
    A single call from the log. Records are never changed once parsed.
    '''
    day_time_start: ClassVar[datetime.time] = datetime.time(8, 0)
    day_time_end: ClassVar[datetime.time] = datetime.time(16, 0)

    phone_number: str
    start: datetime.datetime
    end: datetime.datetime

    def __post_init__(self):
        if not phone_number_pattern.fullmatch(self.phone_number):
            raise InvalidCallError('Phone number contains invalid characters')
        if not self.start < self.end:
            raise InvalidCallError('Call start is not before call end')

    @property
    def duration(self):
        return self.end - self.start

    @classmethod
    def minute_rate(cls, moment):
        '''Price of a minute beginning at the clock time of moment.'''
        if cls.day_time_start <= moment.time() < cls.day_time_end:
            return DAY_MINUTE_PRICE
        return NIGHT_MINUTE_PRICE

    def cost(self):
        #
        # The first minute is always charged at the rate of the start time
        cost = self.minute_rate(self.start)
        #
        # Minutes 2 to 5 are each charged at the rate in effect one second
        # into the minute, provided the call is still going at that point
        for offset in range(1, LONG_CALL_MINUTES):
            minute_start = self.start + datetime.timedelta(
                minutes=offset, seconds=1
            )
            if not self.start <= minute_start <= self.end:
                break
            cost += self.minute_rate(minute_start)
        #
        # Every started minute past the fifth has a flat price
        seconds = self.duration // datetime.timedelta(seconds=1)
        if seconds > LONG_CALL_MINUTES * 60:
            minutes = (Decimal(seconds) / SIXTY_SECONDS).to_integral_value(
                rounding=ROUND_CEILING
            )
            cost += LONG_CALL_MINUTE_PRICE * (minutes - LONG_CALL_MINUTES)
        return cost

    @classmethod
    def from_csv(cls, csv_line):
        #
        # CSV line should be in the format:
        # PhoneNumber,CallStart,CallEnd
        # Only the first two commas separate fields
        fields = csv_line.split(',', 2)
        if len(fields) != 3:
            raise MalformedLineError(
                f'Expected 3 comma separated fields - line is {csv_line!r}'
            )
        number, start, end = fields
        #
        # A bad number is reported even when the timestamps are bad too
        if not phone_number_pattern.fullmatch(number):
            raise InvalidCallError('Phone number contains invalid characters')
        return cls(number, parse_timestamp(start), parse_timestamp(end))

    @classmethod
    def from_log(cls, phone_log):
        '''
        Yield a record for every line of the log. A trailing newline is
        allowed, any other blank line is an error.
        '''
        for line_number, line in enumerate(phone_log.splitlines(), 1):
            try:
                yield cls.from_csv(line)
            except CallParseError as e:
                logger.debug(f'Rejected line {line_number}: {e}')
                raise type(e)(f'Line {line_number}: {e}') from e


def find_most_called_number(records):
    '''
    Return the number with the most calls. Ties go to the numerically
    largest number, then to the larger string when two numbers only differ
    by leading zeros.
    '''
    counts = Counter(record.phone_number for record in records)
    if not counts:
        raise ValueError('Cannot find the most called number of an empty log')
    number, _ = max(
        counts.items(),
        key=lambda item: (item[1], int(item[0]), item[0])
    )
    return number


class TelephoneBillCalculator:

    def calculate(self, phone_log):
        if not phone_log:
            return Decimal(0)
        records = list(CallRecord.from_log(phone_log))
        most_called = find_most_called_number(records)
        total = sum(
            (record.cost() for record in records
             if record.phone_number != most_called),
            Decimal(0)
        )
        logger.debug(
            f'Rated {len(records)} calls, {most_called} is free, '
            f'total {total}'
        )
        return total


default_calculator = TelephoneBillCalculator()


def calculate(phone_log):
    return default_calculator.calculate(phone_log)


def setup_logging(level='WARNING'):
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Calculate the bill for a telephone call log'
    )
    parser.add_argument(
        'log_file', nargs='?', default='-',
        help='Call log file, "-" or nothing to read standard input'
    )
    parser.add_argument(
        '--json', action='store_true', help='Print the total as JSON'
    )
    parser.add_argument(
        '--log-level', default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        type=str.upper
    )
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.log_file == '-':
            phone_log = sys.stdin.read()
        else:
            with open(args.log_file, 'r') as f:
                phone_log = f.read()
        total = calculate(phone_log)
    except (OSError, CallParseError) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1

    amount = str(total.quantize(Decimal('0.01')))
    if args.json:
        print(json.dumps(dict(TotalAmount=amount), indent=4))
    else:
        print(amount)
    return 0


if __name__ == '__main__':
    sys.exit(main())
