import pytest

from core.errors import DBCIOError
from core.models import ByteOrder, Database, Message, Signal, ValueTable
from core.writer import DBCWriter, canonical_frame_format, escape, format_double


class TestFormatDouble:
    def test_plain_values(self):
        """Тест форматирования обычных чисел"""
        assert format_double(0.25) == "0.25"
        assert format_double(16383.75) == "16383.75"
        assert format_double(-40.0) == "-40"
        assert format_double(0.0) == "0"
        assert format_double(0.1) == "0.1"

    def test_precision_widened_when_needed(self):
        text = format_double(1 / 3)
        assert float(text) == 1 / 3

    def test_scientific_notation(self):
        """Тест экспоненциальной записи"""
        assert format_double(1e10) == "1.000000000000000E+010"
        assert format_double(-2.5e12) == "-2.500000000000000E+012"
        assert format_double(1e-7) == "1.000000000000000E-007"

    def test_non_finite_written_as_zero(self):
        """Тест записи NaN и бесконечности"""
        assert format_double(float("nan")) == "0"

    def test_escape(self):
        assert escape('a "b" \\ c') == 'a \\"b\\" \\\\ c'


class TestDBCWriter:
    @pytest.fixture
    def writer(self):
        return DBCWriter()

    def test_section_order(self, writer, database):
        """Тест порядка секций"""
        text = writer.write(database)
        markers = ["VERSION", "\nNS_ :", "\nBS_:", "\nBU_:", "\nVAL_TABLE_ ", "\nBO_ 100", "\nBO_TX_BU_ ", "\nCM_ ", "\nBA_DEF_ ", "\nBA_ \"BusType\"", "\nVAL_ 100"]
        positions = [text.index(marker) for marker in markers]
        assert positions == sorted(positions)

    def test_header_and_nodes(self, writer, database):
        lines = writer.write(database).split("\n")
        assert lines[0] == 'VERSION "1.2"'
        assert lines[1] == lines[2] == ""
        assert lines[3] == "NS_ :"
        assert "BU_: ECU BCM GW" in lines
        assert 'VAL_TABLE_ OnOff 0 "Off" 1 "On" ;' in lines

    def test_signal_line(self, writer, database):
        """Тест строки SG_"""
        text = writer.write(database)
        assert ' SG_ RPM : 0|16@1+ (0.25,0) [0|16383.75] "rpm" BCM' in text
        assert ' SG_ Temp : 23|8@0- (0.5,-40) [-104|23.5] "degC" BCM,GW' in text

    def test_receiver_defaults(self, writer):
        """Тест получателей по умолчанию"""
        db = Database(nodes=["GW"], messages=[
            Message(id=1, name="WithReceivers", transmitter="ECU", receivers=["GW"], signals=[Signal(name="A")]),
            Message(id=2, name="NoReceivers", transmitter="ECU", signals=[Signal(name="B")]),
            Message(id=3, name="NoTransmitter", signals=[Signal(name="C")]),
        ])
        text = writer.write(db)

        assert ' SG_ A : 0|1@1+ (1,0) [0|0] "" GW' in text
        assert ' SG_ B : 0|1@1+ (1,0) [0|0] "" ECU' in text
        assert "BO_ 3 NoTransmitter: 8 GW" in text
        assert ' SG_ C : 0|1@1+ (1,0) [0|0] "" GW' in text

    def test_empty_database_uses_default_node(self, writer):
        db = Database(messages=[Message(id=1, name="M", signals=[Signal(name="S", receivers=["Vector__XXX"])])])
        lines = writer.write(db).split("\n")
        assert "BU_: Vector__XXX" in lines
        assert "BO_ 1 M: 8 Vector__XXX" in lines

    def test_receivers_line_only_when_set(self, writer, database):
        text = writer.write(database)
        assert "BO_TX_BU_ 100 : BCM,GW;" in text
        assert "BO_TX_BU_ 419364865" not in text

    def test_comments_escaped(self, writer, database):
        """Тест экранирования комментариев"""
        text = writer.write(database)
        assert 'CM_ BO_ 100 "Engine status";' in text
        assert 'CM_ SG_ 419364865 Speed "Vehicle \\"speed\\"\nfrom ABS";' in text

    def test_attribute_values(self, writer, database):
        """Тест строк BA_ для сообщений и сигналов"""
        lines = writer.write(database).split("\n")
        assert 'BA_ "BusType" "CAN FD";' in lines
        assert 'BA_ "DocumentTitle" "Powertrain";' in lines
        assert 'BA_ "GenMsgCycleTime" BO_ 100 10;' in lines
        assert 'BA_ "GenMsgCycleTimeFast" BO_ 100 5;' in lines
        assert 'BA_ "GenMsgNrOfRepetition" BO_ 100 3;' in lines
        assert 'BA_ "GenMsgDelayTime" BO_ 100 20;' in lines
        assert 'BA_ "GenMsgSendType" BO_ 100 1;' in lines
        assert 'BA_ "VFrameFormat" BO_ 100 0;' in lines
        assert 'BA_ "VFrameFormat" BO_ 419364865 15;' in lines
        assert 'BA_ "GenSigSendType" SG_ 100 RPM 0;' in lines
        assert 'BA_ "GenSigSendType" SG_ 419364865 Door 1;' in lines
        assert 'BA_ "GenSigSendType" SG_ 419364865 Speed 7;' in lines
        assert 'BA_ "GenSigStartValue" SG_ 100 Temp 10;' in lines
        assert 'BA_ "GenSigSNA" SG_ 100 Temp "0x7F";' in lines

    def test_default_attributes_omitted(self, writer):
        """Тест пропуска атрибутов со значением по умолчанию"""
        db = Database(messages=[Message(id=1, name="M", transmitter="ECU", signals=[Signal(name="S")])])
        lines = writer.write(db).split("\n")
        assert [line for line in lines if line.startswith("BA_ ")] == ['BA_ "BusType" "CAN";']
        assert not any(line.startswith("VAL_ ") for line in lines)

    def test_unknown_send_type_written_as_no_send_type(self, writer):
        signal = Signal(name="S", send_type="Sporadic")
        db = Database(messages=[Message(id=1, name="M", transmitter="ECU", send_type="Sporadic", signals=[signal])])
        lines = writer.write(db).split("\n")
        assert 'BA_ "GenMsgSendType" BO_ 1 0;' in lines
        assert 'BA_ "GenSigSendType" SG_ 1 S 7;' in lines

    def test_frame_format_from_message_type(self, writer):
        message = Message(id=1, name="M", transmitter="ECU", message_type="CAN FD Standard")
        assert canonical_frame_format(message) == "StandardCAN_FD"
        assert 'BA_ "VFrameFormat" BO_ 1 14;' in writer.write(Database(messages=[message]))

    def test_value_descriptions_ascending(self, writer):
        """Тест порядка описаний значений"""
        signal = Signal(name="S", length=8, is_signed=True, value_table={5: "five", -1: "neg", 0: "zero"})
        db = Database(messages=[Message(id=7, name="M", transmitter="ECU", signals=[signal])])
        assert 'VAL_ 7 S -1 "neg" 0 "zero" 5 "five";' in writer.write(db)

    def test_motorola_flag(self, writer):
        """Тест флага порядка байт Motorola"""
        signal = Signal(name="S", start_bit=7, length=16, byte_order=ByteOrder.MOTOROLA)
        db = Database(messages=[Message(id=1, name="M", transmitter="ECU", signals=[signal])])
        assert " SG_ S : 7|16@0+ " in writer.write(db)

    def test_value_table_text_escaped(self, writer):
        db = Database(global_value_tables=[ValueTable(name="T", values={1: 'say "x"'})])
        assert 'VAL_TABLE_ T 1 "say \\"x\\"" ;' in writer.write(db)

    def test_output_ends_with_newline(self, writer, database):
        assert writer.write(database).endswith("\n")


class TestDBCWriterFiles:
    def test_write_file(self, tmp_path, database):
        """Тест записи в файл"""
        path = tmp_path / "out.dbc"
        writer = DBCWriter()
        writer.write_file(database, path)
        assert path.read_text(encoding="utf-8") == writer.write(database)

    def test_write_file_bad_path(self, tmp_path, database):
        """Тест ошибки записи в несуществующий каталог"""
        path = tmp_path / "missing_dir" / "out.dbc"
        with pytest.raises(DBCIOError) as exc_info:
            DBCWriter().write_file(database, path)
        assert exc_info.value.operation == "write"
        assert exc_info.value.path == str(path)
        assert not path.exists()

    def test_write_file_unencodable(self, tmp_path):
        """Тест ошибки кодировки при записи"""
        db = Database(messages=[Message(id=1, name="M", transmitter="ECU", comment="发动机")])
        with pytest.raises(DBCIOError):
            DBCWriter().write_file(db, tmp_path / "out.dbc", encoding="ascii")
