"""
Unit tests for keyframe and video prompt templates.
"""
from modules.scene_pipeline.prompts import (
    KEYFRAME_REQUIREMENTS,
    VIDEO_REQUIREMENTS,
    build_keyframe_prompt,
    build_video_prompt,
)


def test_keyframe_prompt_includes_context(make_scene):
    scene = make_scene(1)
    prompt = build_keyframe_prompt(scene, "end")

    assert prompt.startswith("end of scene 1")
    assert "Script Context: Scene 1 narrative" in prompt
    assert "Visual Context: Scene 1 visuals" in prompt
    assert "Closing frame" in prompt
    for requirement in KEYFRAME_REQUIREMENTS:
        assert f"- {requirement}" in prompt


def test_keyframe_prompt_omits_empty_visuals(make_scene):
    scene = make_scene(0)
    scene.visual_description = ""
    assert "Visual Context" not in build_keyframe_prompt(scene, "start")


def test_video_prompt_template(make_scene):
    prompt = build_video_prompt(make_scene(2))
    lines = prompt.splitlines()

    assert lines[0] == "Scene: Scene 2 narrative"
    assert "Start: start of scene 2" in lines
    assert "End: end of scene 2" in lines
    assert "Requirements:" in lines
    for requirement in VIDEO_REQUIREMENTS:
        assert f"- {requirement}" in lines
