"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import logging
from typing import Optional

from hal.plc.ModbusPlc import ModbusPlc, load_tag_map
from hal.plc.SimulatorPlc import SimulatorPlc
from shared.interfaces.hal import IEventSink, IPlcDriver
from src.core.logic.tag_engine import TagSyncEngine
from src.core.vision.detector import DefectDetector, MockDefectGenerator, OnnxDefectModel
from src.linewatch_app.config import LineConfig


def build_driver(config: LineConfig, logger: Optional[logging.Logger] = None) -> IPlcDriver:
    if config.mode == "live":
        return ModbusPlc(
            config.plc_host,
            config.plc_port,
            tag_map=load_tag_map(config.plc_tag_map),
            logger=logger,
        )
    return SimulatorPlc(
        defect_rate=config.defect_rate,
        fault_rate_pct=config.fault_rate_pct,
        base_cycle_time_ms=config.base_cycle_time_ms,
        seed=config.seed,
        logger=logger,
    )


def build_engine(
    config: LineConfig,
    sink: Optional[IEventSink] = None,
    driver: Optional[IPlcDriver] = None,
    logger: Optional[logging.Logger] = None,
) -> TagSyncEngine:
    return TagSyncEngine(
        driver or build_driver(config, logger),
        sink,
        poll_interval_s=config.poll_interval_s,
        critical_tags=config.critical_tags,
        critical_write_tags=config.critical_write_tags,
        primary_station=config.primary_station,
        part_sku=config.part_sku,
        alarm_auto_clear_s=config.alarm_auto_clear_s,
        seed=config.seed,
        logger=logger,
    )


def build_detector(config: LineConfig, logger: Optional[logging.Logger] = None) -> DefectDetector:
    return DefectDetector(
        OnnxDefectModel(config.model_path, logger=logger),
        class_labels=config.class_labels,
        confidence_threshold=config.confidence_threshold,
        iou_threshold=config.iou_threshold,
        fallback=MockDefectGenerator(config.class_labels, config.defect_rate, config.seed),
        logger=logger,
    )
