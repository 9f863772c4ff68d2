import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from rastercam import pipeline
from rastercam.config import PipelineConfig
from rastercam.errors import HandleError
from rastercam.pipeline import (ConversionService, PipelineRun, RasterizeRequest,
                                mill_meshes)
from rastercam.rasterize import FilterMode
from rastercam.shapes import box, hemisphere_tool


def test_run_hands_out_and_releases_handles():
    config = PipelineConfig(step_size=0.5)
    with PipelineRun(config, run_id='run-1') as run:
        terrain = run.rasterize(box(4, 4, 2), purpose='terrain')
        tool = run.rasterize(hemisphere_tool(1.0, rings=4, sectors=8), purpose='tool')
        assert run.live_handles == 2
        assert run.get(terrain).filter_mode is FilterMode.UPWARD_FACING
        assert run.get(tool).filter_mode is FilterMode.DOWNWARD_FACING
        assert tool.purpose == 'tool'

        grid = run.build_height_grid(terrain)
        offsets = run.build_tool(tool)
        path = run.generate_toolpath(grid, offsets)
        assert np.allclose(run.get(path, 'toolpath').heights, 2.0)

        run.release(terrain)
        with pytest.raises(HandleError):
            run.get(terrain)
        with pytest.raises(HandleError):
            run.get(grid, 'point_cloud')
    assert run.closed
    assert run.live_handles == 0
    with pytest.raises(HandleError):
        run.get(path)
    with pytest.raises(HandleError):
        run.rasterize(box())


def test_handles_do_not_cross_runs():
    with PipelineRun() as first, PipelineRun() as second:
        handle = first.rasterize(box(), purpose='terrain')
        with pytest.raises(HandleError) as excinfo:
            second.get(handle)
        assert 'does not belong' in str(excinfo.value)


def test_service_correlates_results():
    requests = [
        RasterizeRequest('a', 'terrain', box(4, 4, 2), 0.5),
        RasterizeRequest('b', 'tool', hemisphere_tool(1.0, rings=4, sectors=8), 0.25,
                         FilterMode.DOWNWARD_FACING),
        RasterizeRequest('c', 'terrain', box(2, 2, 1), 0.5, options={'use_index': False}),
    ]
    with ConversionService(max_workers=3) as service:
        futures = [service.submit(r) for r in requests]
        results = [f.result() for f in reversed(futures)]
    by_id = {r.request_id: r for r in results}
    assert set(by_id) == {'a', 'b', 'c'}
    assert by_id['b'].purpose == 'tool'
    assert by_id['b'].cloud.step == 0.25
    assert by_id['a'].cloud.count == 81
    assert by_id['c'].cloud.count == 25


def test_service_runs_inline():
    result = ConversionService.run(RasterizeRequest('x', 'terrain', box(), 0.5))
    assert result.request_id == 'x'
    assert result.elapsed >= 0.0


def test_mill_meshes():
    config = PipelineConfig(step_size=0.25, x_stride=2, y_stride=4, floor_z=-1.0)
    result = mill_meshes(box(6, 6, 3), hemisphere_tool(1.0, rings=6, sectors=12), config)
    assert result.terrain.step == result.tool.step == 0.25
    assert result.toolpath.shape == (7, 13)
    assert result.toolpath.floor_z == -1.0
    assert result.toolpath.heights.max() == pytest.approx(3.0)


def test_concurrent_submit_creates_one_executor(monkeypatch):
    created = []
    real_executor = pipeline.ThreadPoolExecutor

    def counting(*args, **kwargs):
        executor = real_executor(*args, **kwargs)
        created.append(executor)
        return executor

    monkeypatch.setattr(pipeline, 'ThreadPoolExecutor', counting)
    service = ConversionService(max_workers=2)
    start = threading.Barrier(8)
    futures = []

    def submit(i):
        start.wait()
        futures.append(service.submit(RasterizeRequest(str(i), 'terrain', box(), 0.5)))

    threads = [threading.Thread(target=submit, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(f.result().request_id for f in futures) == [str(i) for i in range(8)]
    service.shutdown()
    assert len(created) == 1


def test_shared_executor_is_left_running():
    with ThreadPoolExecutor(max_workers=1) as executor:
        service = ConversionService(executor)
        service.shutdown()
        result = service.submit(RasterizeRequest('x', 'terrain', box(), 0.5)).result()
        assert result.request_id == 'x'
