import pytest

from config import LoggingConfig, ParserConfig, Settings, WriterConfig
from core.models import ByteOrder, Database, Message, Signal, ValueTable

SAMPLE_DBC = '''VERSION "1.0"


NS_ :
\tNS_DESC_
\tCM_
\tBA_DEF_
\tBA_
\tVAL_
\tBO_TX_BU_

BS_:

BU_: ECU BCM GW

BO_ 100 Engine: 8 ECU
 SG_ RPM : 0|16@1+ (0.25,0) [0|16383.75] "rpm" BCM,GW
 SG_ Temp : 23|8@0- (0.5,-40) [-104|23.5] "degC" BCM

BO_ 200 Body: 8 BCM
 SG_ Door : 0|1@1+ (1,0) [0|1] "" ECU

BO_TX_BU_ 100 : BCM,GW;

CM_ BO_ 100 "Engine status";
CM_ SG_ 100 RPM "Engine speed";

BA_DEF_ BO_ "GenMsgCycleTime" INT 0 65535;
BA_DEF_ BO_ "GenMsgSendType" ENUM "Cycle","OnChange","OnWrite","OnWriteWithRepetition","OnChangeWithRepetition","IfActive","IfActiveWithRepetition","NoMsgSendType";
BA_DEF_ BO_ "VFrameFormat" ENUM "StandardCAN","ExtendedCAN","reserved","reserved","reserved","reserved","reserved","reserved","reserved","reserved","reserved","reserved","reserved","reserved","StandardCAN_FD","ExtendedCAN_FD";
BA_DEF_ SG_ "GenSigSendType" ENUM "Cycle","OnWrite","OnWriteWithRepetition","OnChange","OnChangeWithRepetition","IfActive","IfActiveWithRepetition","NoSigSendType";
BA_DEF_DEF_ "GenMsgCycleTime" 0;
BA_ "BusType" "CAN";
BA_ "DocumentTitle" "Powertrain";
BA_ "GenMsgCycleTime" BO_ 100 10;
BA_ "GenMsgSendType" BO_ 100 1;
BA_ "VFrameFormat" BO_ 200 1;
BA_ "GenSigSendType" SG_ 100 RPM 3;
BA_ "GenSigStartValue" SG_ 100 Temp 80;
BA_ "GenSigSNA" SG_ 100 Temp "0x7F";
VAL_ 200 Door 1 "Open" 0 "Closed" ;
'''


@pytest.fixture
def test_settings():
    return Settings(
        logging=LoggingConfig(level="WARNING", format="console"),
        parser=ParserConfig(encoding="utf-8"),
        writer=WriterConfig(),
    )


@pytest.fixture
def sample_dbc_text():
    return SAMPLE_DBC


@pytest.fixture
def sample_dbc_file(tmp_path):
    dbc_file = tmp_path / "sample.dbc"
    dbc_file.write_text(SAMPLE_DBC, encoding="utf-8")
    return dbc_file


def build_database() -> Database:
    """Корректная база для проверок записи/чтения."""
    engine = Message(
        id=100,
        name="Engine",
        length=8,
        transmitter="ECU",
        receivers=["BCM", "GW"],
        cycle_time=10,
        cycle_time_fast=5,
        nr_of_repetitions=3,
        delay_time=20,
        send_type="OnChange",
        frame_format="StandardCAN",
        message_type="CAN Standard",
        comment="Engine status",
        signals=[
            Signal(
                name="RPM",
                start_bit=0,
                length=16,
                byte_order=ByteOrder.INTEL,
                factor=0.25,
                minimum=0,
                maximum=16383.75,
                unit="rpm",
                receivers=["BCM"],
                send_type="Cycle",
                description="Engine speed",
            ),
            Signal(
                name="Temp",
                start_bit=23,
                length=8,
                byte_order=ByteOrder.MOTOROLA,
                is_signed=True,
                factor=0.5,
                offset=-40,
                minimum=-104,
                maximum=23.5,
                unit="degC",
                receivers=["BCM", "GW"],
                initial_value=10,
                inactive_value_hex="0x7F",
                value_table={1: "Warm", 0: "Cold"},
            ),
        ],
    )
    body = Message(
        id=419364865,
        name="Body",
        length=64,
        transmitter="BCM",
        frame_format="ExtendedCAN_FD",
        message_type="CANFD Extended",
        signals=[
            Signal(
                name="Door",
                start_bit=0,
                length=1,
                maximum=1,
                receivers=["ECU"],
                send_type="OnWrite",
                value_table={0: "Closed", 1: "Open"},
            ),
            Signal(
                name="Speed",
                start_bit=8,
                length=12,
                factor=0.1,
                maximum=409.5,
                unit="km/h",
                receivers=["ECU"],
                send_type="NoSigSendType",
                description='Vehicle "speed"\nfrom ABS',
            ),
        ],
    )
    return Database(
        version="1.2",
        bus_type="CAN FD",
        nodes=["ECU", "BCM", "GW"],
        messages=[engine, body],
        global_value_tables=[ValueTable(name="OnOff", values={0: "Off", 1: "On"})],
        document_title="Powertrain",
    )


@pytest.fixture
def database():
    return build_database()
