# protocol_constants.py
import struct

MAGIC = 0x0000FEED
VERSION = 1
SUPPORTED_VERSIONS = (1,)

# Message types
MSG_HEARTBEAT = 0x01
MSG_DATA = 0x02
MSG_CONTROL = 0x03

# Header format (for struct.pack/unpack)
# magic, version, msg_type, sequence, timestamp, sender_id, payload_len, checksum
HEADER_FMT = '!I B B H Q I H H'   # 24 bytes
HEADER_SIZE = struct.calcsize(HEADER_FMT)
CHECKSUM_OFFSET = 22              # checksum covers header[:22]

MAX_PAYLOAD_LEN = 0xFFFF
MAX_SEQUENCE = 0x10000            # wrap modulus
BUFFER_SIZE = HEADER_SIZE + MAX_PAYLOAD_LEN

# Defaults used by the demo and tooling
DEFAULT_GROUP = '239.1.1.1'
DEFAULT_PORT = 12345
DEFAULT_INTERFACE = '0.0.0.0'
DEFAULT_TTL = 1                   # local network only
POLL_INTERVAL = 0.2               # seconds between stop-signal checks

VERBOSE = False
