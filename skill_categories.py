"""Skill category lookup used to pick the Proof of Skill artwork."""
from enum import Enum


class SkillCategory(str, Enum):
    DIGITAL_FABRICATION = 'digital-fabrication'
    CRAFTS_TEXTILES = 'crafts-textiles'
    WOODWORKING = 'woodworking'
    AUTO_SKILLS = 'auto-skills'
    METALWORK = 'metalwork'
    HOME_REPAIRS = 'home-repairs'
    OTHER = 'other'


# Checked in order; the first category with a matching keyword wins.
SKILL_KEYWORDS = (
    (SkillCategory.DIGITAL_FABRICATION, ('3d printing', '3d print', 'cnc', 'laser', 'cad', 'digital fabrication')),
    (SkillCategory.CRAFTS_TEXTILES, ('craft', 'textile', 'sewing', 'knitting', 'fabric', 'crafts & textiles')),
    (SkillCategory.WOODWORKING, ('wood', 'carpentry', 'cabinet', 'woodworking')),
    (SkillCategory.AUTO_SKILLS, ('auto', 'car', 'vehicle', 'mechanic', 'auto skills')),
    (SkillCategory.METALWORK, ('metal', 'welding', 'steel', 'aluminum', 'metalwork')),
    (SkillCategory.HOME_REPAIRS, ('home', 'repair', 'plumbing', 'electrical', 'maintenance', 'home repairs')),
)

CATEGORY_IMAGES = {
    SkillCategory.WOODWORKING: '/WoodworkingNFT.avif',
    SkillCategory.AUTO_SKILLS: '/AutoSkillsNFT.avif',
    SkillCategory.METALWORK: '/MetalworkNFT.avif',
    SkillCategory.CRAFTS_TEXTILES: '/CraftsTextilesNFT.avif',
    SkillCategory.DIGITAL_FABRICATION: '/DigitalFabricationNFT.avif',
    SkillCategory.HOME_REPAIRS: '/HomeRepairsNFT.avif',
    SkillCategory.OTHER: '/OtherNFT.avif',
}


def category_for_skill(skill):
    text = (skill or '').lower()
    if not text:
        return SkillCategory.OTHER
    for category, keywords in SKILL_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return SkillCategory.OTHER


def category_for_skills(skills):
    """Category of an ordered skills list, keyed by its first entry."""
    if not skills:
        return SkillCategory.OTHER
    return category_for_skill(skills[0])


def image_for_skills(skills, base_url=''):
    return f'{base_url}{CATEGORY_IMAGES[category_for_skills(skills)]}'
