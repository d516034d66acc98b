class SpiError(Exception):
    """Base class for everything that can go wrong with an SPI record"""
    pass


class UnrecognizedMagicError(SpiError):
    """Raised when a record header does not start with a known tag"""
    pass


class InvalidRecordBoundsError(SpiError):
    """Raised when declared lengths or table offsets run past the available bytes"""
    pass


class DecodeError(SpiError):
    """Raised when a record's payload cannot be decoded"""
    pass


class TruncatedError(DecodeError):
    """Raised when a read goes past the end of a sub-buffer"""

    def __init__(self, buffer_name, position, length):
        super().__init__(f"read past end of {buffer_name} buffer at {position} (length {length})")
        self.buffer_name = buffer_name
        self.position = position
        self.length = length


class InvalidBackReferenceError(DecodeError):
    """Raised when a back-reference points before the start of the output"""

    def __init__(self, distance, output_length):
        super().__init__(f"back-reference distance {distance} exceeds output length {output_length}")
        self.distance = distance
        self.output_length = output_length
