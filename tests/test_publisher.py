from vision_pipeline.channels import KeyValueTable, UIBroadcaster
from vision_pipeline.common import PipelineResult, Target
from vision_pipeline.publisher import ResultPublisher

VALID = PipelineResult(
    valid=True, raw_point=Target((120.0, 80.0), (10.0, 10.0)), pitch=4.5, yaw=-2.0
)


def _publisher(messages):
    ui = UIBroadcaster()
    ui.subscribe(messages.append)
    table = KeyValueTable("/t/cam0")
    return ResultPublisher("cam0", table, ui), table


def test_valid_result_writes_angles():
    msgs = []
    pub, table = _publisher(msgs)
    pub.publish(VALID, 12.5, 30.0, active_camera="cam0")

    assert table.get("Valid") is True
    assert table.get("Pitch") == 4.5
    assert table.get("Yaw") == -2.0
    assert table.get("TimeStamp") == 12.5
    assert msgs == [{"point": {"pitch": 4.5, "yaw": -2.0, "fps": 30.0}, "raw_point": [120.0, 80.0]}]


def test_invalid_result_keeps_stale_angles():
    msgs = []
    pub, table = _publisher(msgs)
    pub.publish(VALID, 1.0, 30.0, active_camera="cam0")
    pub.publish(PipelineResult.invalid(), 2.0, 29.0, active_camera="cam0")

    assert table.get("Valid") is False
    assert table.get("Yaw") == -2.0
    assert table.get("TimeStamp") == 2.0
    assert not table.contains("Distance")
    assert msgs[-1] == {"point": {"pitch": 0, "yaw": 0, "fps": 29.0}, "raw_point": [0.0, 0.0]}


def test_no_broadcast_for_inactive_camera():
    msgs = []
    pub, table = _publisher(msgs)
    pub.publish(VALID, 1.0, 30.0, active_camera="other")
    assert msgs == []
    assert table.get("Valid") is True


def test_broken_subscriber_does_not_stop_others():
    got = []
    ui = UIBroadcaster()

    def boom(_msg):
        raise RuntimeError("socket closed")

    ui.subscribe(boom)
    ui.subscribe(got.append)
    ui.broadcast({"x": 1})
    assert got == [{"x": 1}]
